import logging

from rich.pretty import pprint

from skipper import *


@command(version="1.0.0", descr="tiny file server")
def serve(
        root=Cardinal("[dir]", default="."),
        /,
        port=Option("-p", "--port", type=int, default=8080, descr="port to listen on"),
        *,
        debug=Flag("-d", "--debug", conflicts=("silent",), descr="verbose output"),
        silent=Flag("-s", "--silent", descr="no output"),
):
    if debug:
        logging.basicConfig(level=logging.DEBUG)
    pprint({"root": root, "port": port, "debug": debug, "silent": silent})


@serve.command(name="status", descr="show server status")
def status(*, json=Flag("--json", descr="machine-readable output")):
    pprint({"status": "ok", "json": json})


if __name__ == '__main__':
    serve.parse()
