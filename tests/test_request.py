import pytest
from structlog.testing import capture_logs

from weblink import request as request_module
from weblink.errors import UploadFileUnavailable
from weblink.request import (
    RequestEncoding,
    build_request,
    encode_multipart,
    make_boundary,
    parse_extra_headers,
    select_encoding,
)
from weblink.url import URL


@pytest.fixture
def upload_file(tmp_path):
    path = tmp_path / "notes.txt"
    path.write_bytes(b"hello")
    return path


def test_get_appends_parameters_and_has_no_body():
    url = URL("http://x.com/search").with_parameter("q", "two words")
    prepared = build_request(url, use_post_command=False)

    assert prepared.method == "GET"
    assert prepared.encoding is RequestEncoding.GET
    assert prepared.url == "http://x.com/search?q=two+words"
    assert prepared.body == b""
    assert prepared.headers == []


def test_get_ignores_post_data_and_upload_files(upload_file):
    url = (URL("http://x.com/")
           .with_post_data("raw")
           .with_file_to_upload("doc", upload_file, "text/plain"))
    prepared = build_request(url, use_post_command=False)

    assert prepared.encoding is RequestEncoding.GET
    assert prepared.body == b""


def test_urlencoded_post_body():
    url = URL("http://x.com/form").with_parameter("a", "1").with_parameter("b", "two words")
    prepared = build_request(url, use_post_command=True)

    assert prepared.method == "POST"
    assert prepared.encoding is RequestEncoding.URLENCODED
    assert prepared.url == "http://x.com/form"
    assert prepared.body == b"a=1&b=two+words"
    assert prepared.headers == [
        ("Content-Type", "application/x-www-form-urlencoded"),
        ("Content-Length", "15"),
    ]


def test_explicit_post_data_wins_over_parameters():
    url = URL("http://x.com/form").with_parameter("a", "1").with_post_data("<xml/>")

    with capture_logs() as logs:
        prepared = build_request(url, use_post_command=True)

    assert prepared.body == b"<xml/>"
    assert prepared.header("content-length") == "6"
    assert [log["event"] for log in logs] == ["post_data_overrides_parameters"]


def test_post_data_alone_is_sent_verbatim():
    url = URL("http://x.com/form").with_post_data(b"\x00\x01raw")

    with capture_logs() as logs:
        prepared = build_request(url, use_post_command=True)

    assert prepared.body == b"\x00\x01raw"
    assert logs == []


@pytest.mark.parametrize("parameter_count", [0, 1, 5])
def test_multipart_selected_whenever_files_are_present(upload_file, parameter_count):
    url = URL("http://x.com/up")
    for i in range(parameter_count):
        url = url.with_parameter(f"p{i}", str(i))

    assert select_encoding(url, True) is RequestEncoding.URLENCODED

    url = url.with_file_to_upload("doc", upload_file, "text/plain")
    assert select_encoding(url, True) is RequestEncoding.MULTIPART
    assert build_request(url, True).encoding is RequestEncoding.MULTIPART


def test_multipart_wire_format_is_exact(upload_file):
    url = (URL("http://x.com/up")
           .with_parameter("user", "jo")
           .with_file_to_upload("doc", upload_file, "text/plain"))
    prepared = build_request(url, use_post_command=True, boundary="BOUNDARY")

    expected = (
        b'--BOUNDARY\r\n'
        b'Content-Disposition: form-data; name="user"\r\n'
        b'\r\n'
        b'jo\r\n'
        b'--BOUNDARY\r\n'
        b'Content-Disposition: form-data; name="doc"; filename="notes.txt"\r\n'
        b'Content-Type: text/plain\r\n'
        b'\r\n'
        b'hello\r\n'
        b'--BOUNDARY--\r\n'
    )
    assert prepared.body == expected
    assert prepared.url == "http://x.com/up"
    assert prepared.boundary == "BOUNDARY"
    assert prepared.headers == [
        ("Content-Type", "multipart/form-data; boundary=BOUNDARY"),
        ("Content-Length", str(len(expected))),
    ]


def test_multipart_field_values_are_not_escaped(upload_file):
    url = (URL("http://x.com/up")
           .with_parameter("note", "a b&c")
           .with_file_to_upload("doc", upload_file, "text/plain"))
    body = build_request(url, True, boundary="B").body
    assert b'name="note"\r\n\r\na b&c\r\n' in body


def test_multipart_ignores_post_data(upload_file):
    url = URL("http://x.com/up").with_post_data("raw").with_file_to_upload("doc", upload_file, "text/plain")

    with capture_logs() as logs:
        prepared = build_request(url, True, boundary="B")

    assert b"raw" not in prepared.body
    assert [log["event"] for log in logs] == ["post_data_ignored_for_multipart"]


def test_generated_boundary_avoids_payload(tmp_path, monkeypatch):
    path = tmp_path / "tricky.bin"
    path.write_bytes(b"xx weblink-" + b"a" * 32 + b" xx")
    tokens = iter(["a" * 32, "b" * 32])
    monkeypatch.setattr(request_module.secrets, "token_hex", lambda n: next(tokens))

    url = URL("http://x.com/up").with_file_to_upload("f", path, "application/octet-stream")
    prepared = build_request(url, True)

    assert prepared.boundary == "weblink-" + "b" * 32
    assert prepared.header("Content-Type") == "multipart/form-data; boundary=weblink-" + "b" * 32


def test_make_boundary_has_prefix():
    boundary = make_boundary([b"payload"])
    assert boundary.startswith("weblink-")
    assert len(boundary) == len("weblink-") + 32


def test_missing_upload_file_fails_at_build_time(tmp_path):
    missing = tmp_path / "gone.txt"
    url = URL("http://x.com/up").with_file_to_upload("doc", missing, "text/plain")

    with pytest.raises(UploadFileUnavailable) as excinfo:
        build_request(url, True)

    assert excinfo.value.path == missing
    assert excinfo.value.url == "http://x.com/up"


def test_file_deleted_after_with_file_to_upload(upload_file):
    url = URL("http://x.com/up").with_file_to_upload("doc", upload_file, "text/plain")
    upload_file.unlink()

    with pytest.raises(UploadFileUnavailable):
        build_request(url, True)


def test_extra_headers_follow_generated_headers_without_dedup():
    url = URL("http://x.com/form").with_parameter("a", "1")
    prepared = build_request(url, True, "Content-Type: text/plain\r\nX-Token: 1\nX-Token: 2\n")

    assert prepared.headers == [
        ("Content-Type", "application/x-www-form-urlencoded"),
        ("Content-Length", "3"),
        ("Content-Type", "text/plain"),
        ("X-Token", "1"),
        ("X-Token", "2"),
    ]
    assert prepared.header("content-type") == "application/x-www-form-urlencoded"


def test_parse_extra_headers_skips_junk():
    with capture_logs() as logs:
        headers = parse_extra_headers("\n\nAccept: text/xml\nnot a header\n: empty\nX-Time: 12:30")

    assert headers == [("Accept", "text/xml"), ("X-Time", "12:30")]
    assert [log["event"] for log in logs] == ["extra_header_ignored", "extra_header_ignored"]


def test_encode_multipart_orders_fields_before_files():
    body = encode_multipart(
        "B",
        [("a", b"1"), ("b", b"2")],
        [("f", "f.bin", "application/octet-stream", b"\x00")],
    )
    assert body.index(b'name="a"') < body.index(b'name="b"') < body.index(b'name="f"')
    assert body.endswith(b"--B--\r\n")


def test_disposition_names_are_sanitised():
    body = encode_multipart("B", [('we"ird\r\nname', b"v")], [])
    assert b'name="we%22irdname"' in body
