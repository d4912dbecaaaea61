"""
Entrypoint: load .env and config, set up logging, build a URL from the
command line and fetch it.
"""

import argparse
import re
import sys

import structlog
from dotenv import load_dotenv
from lxml import etree

from weblink.config import config
from weblink.errors import ParseFailure, WeblinkError
from weblink.log import configure_logging
from weblink.opener import URLOpener, parse_xml
from weblink.url import URL

logger = structlog.get_logger(__name__)

_MIME_TYPE = re.compile(r"^[\w.+-]+/[\w.+-]+$")


def _split_pair(text: str, option: str):
    name, sep, value = text.partition("=")
    if not sep or not name:
        raise argparse.ArgumentTypeError(f"{option} expects NAME=VALUE, got {text!r}")
    return name, value


def split_upload(target: str):
    """Split PATH[:MIME] at its last colon, but only when a MIME type follows it."""
    path, sep, mime_type = target.rpartition(":")
    if sep and path and _MIME_TYPE.match(mime_type):
        return path, mime_type
    return target, ""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="weblink", description="Fetch a URL.")
    parser.add_argument("url", help="address to fetch")
    parser.add_argument("--post", action="store_true", help="send parameters with POST")
    parser.add_argument("-p", "--param", action="append", default=[], metavar="NAME=VALUE",
                        type=lambda s: _split_pair(s, "--param"), help="add a parameter")
    parser.add_argument("-f", "--file", action="append", default=[], metavar="NAME=PATH[:MIME]",
                        type=lambda s: _split_pair(s, "--file"),
                        help="upload a file (implies multipart POST)")
    parser.add_argument("-d", "--data", help="raw POST body")
    parser.add_argument("-H", "--header", action="append", default=[], metavar="HEADER",
                        help='extra header line, e.g. "Accept: text/xml"')
    parser.add_argument("--timeout-ms", type=int, default=0,
                        help="0 = default, negative = no timeout")
    parser.add_argument("--xml", action="store_true", help="parse the response as XML")
    parser.add_argument("-o", "--output", help="write the raw body to this file")
    parser.add_argument("--browser", action="store_true",
                        help="open the URL in the default browser instead of fetching it")
    parser.add_argument("--progress", action="store_true", help="log upload progress")
    return parser


def build_url(args) -> URL:
    url = URL(args.url)
    for name, value in args.param:
        url = url.with_parameter(name, value)
    for name, target in args.file:
        path, mime_type = split_upload(target)
        url = url.with_file_to_upload(name, path, mime_type)
    if args.data is not None:
        url = url.with_post_data(args.data)
    return url


def _log_progress(bytes_sent: int, total_bytes: int) -> bool:
    logger.info("upload_progress", bytes_sent=bytes_sent, total_bytes=total_bytes)
    return True


def run(argv=None, opener: URLOpener = None) -> int:
    """Run the command line tool; returns the process exit code."""
    args = build_parser().parse_args(argv)
    url = build_url(args)

    if args.browser:
        return 0 if url.launch_in_default_browser() else 1

    use_post = args.post or bool(args.file) or args.data is not None
    progress = _log_progress if args.progress else None

    owns_opener = opener is None
    opener = opener or URLOpener()
    try:
        with opener.open_stream(url, use_post, progress, "\n".join(args.header),
                                args.timeout_ms) as stream:
            body = stream.read()
            encoding = stream.encoding
    except WeblinkError as e:
        logger.error("fetch_failed", url=str(url), error=str(e))
        return 1
    finally:
        if owns_opener:
            opener.close()

    if args.output:
        with open(args.output, "wb") as f:
            f.write(body)
        logger.info("body_written", path=args.output, size=len(body))
        return 0

    if args.xml:
        try:
            root = parse_xml(body.decode(encoding or "utf-8", errors="replace"))
        except ParseFailure as e:
            logger.error("xml_parse_failed", url=str(url), error=str(e))
            return 1
        sys.stdout.write(etree.tostring(root, pretty_print=True, encoding="unicode"))
        return 0

    sys.stdout.write(body.decode(encoding or "utf-8", errors="replace"))
    return 0


def main():
    """Console entry point."""
    load_dotenv()

    log_config = config.logging
    configure_logging(log_config.get("level", "INFO"), log_config.get("json", True))

    try:
        sys.exit(run())
    except KeyboardInterrupt:
        logger.info("interrupted")
        sys.exit(1)


if __name__ == "__main__":
    main()
