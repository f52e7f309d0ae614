from __future__ import annotations

import io
import json
from pathlib import Path

from feed_importer.config import NormalizeSettings
from feed_importer.engine.normalizer import StreamingNormalizer

ITEM = """
  <item>
    <guid>{guid}</guid>
    <functiontitle>Magazijnier {n} (m/v)</functiontitle>
    <description><![CDATA[<p>Job <b>{n}</b></p><script>x()</script>]]></description>
    <company>Logi NV</company>
    <city>Antwerpen</city>
    <province>Antwerpen</province>
    <languagecode>nl</languagecode>
  </item>
"""


def write_feed(path: Path, items: str, closed: bool = True) -> Path:
    body = f"<?xml version='1.0' encoding='utf-8'?><rss><channel>{items}"
    if closed:
        body += "</channel></rss>"
    path.write_text(body, encoding="utf-8")
    return path


def read_lines(buffer: io.StringIO) -> list[dict]:
    return [json.loads(line) for line in buffer.getvalue().splitlines()]


def test_normalize_stages_one_line_per_item(tmp_path: Path) -> None:
    raw = write_feed(tmp_path / "feed.xml", "".join(ITEM.format(guid=f"g{n}", n=n) for n in range(3)))
    out = io.StringIO()

    count = StreamingNormalizer(NormalizeSettings(write_batch_size=2)).normalize(raw, out, "logi")

    rows = read_lines(out)
    assert count == 3
    assert [row["identifier"] for row in rows] == ["g0", "g1", "g2"]
    assert rows[0]["title"] == "Magazijnier 0"
    assert rows[0]["description"] == "<p>Job <b>0</b></p>"
    assert rows[0]["feed"] == "logi"
    assert rows[0]["link"].startswith("https://antwerpen.work/job/")


def test_items_without_identifier_are_skipped(tmp_path: Path) -> None:
    items = ITEM.format(guid="", n=1) + "<item></item>" + ITEM.format(guid="keep", n=2)
    raw = write_feed(tmp_path / "feed.xml", items)
    out = io.StringIO()

    count = StreamingNormalizer().normalize(raw, out)

    assert count == 1
    assert read_lines(out)[0]["identifier"] == "keep"


def test_namespaced_items_and_fields_are_read_by_local_name(tmp_path: Path) -> None:
    raw = tmp_path / "feed.xml"
    raw.write_text(
        "<?xml version='1.0'?><feed xmlns='urn:jobs' xmlns:j='urn:extra'>"
        "<item><guid>ns-1</guid><j:Company>Acme</j:Company></item></feed>",
        encoding="utf-8",
    )
    out = io.StringIO()

    assert StreamingNormalizer().normalize(raw, out) == 1
    row = read_lines(out)[0]
    assert row["identifier"] == "ns-1"
    assert row["company"] == "Acme"


def test_truncated_feed_keeps_items_before_the_error(tmp_path: Path) -> None:
    items = ITEM.format(guid="a", n=1) + ITEM.format(guid="b", n=2) + "<item><guid>c</gu"
    raw = write_feed(tmp_path / "feed.xml", items, closed=False)
    out = io.StringIO()

    count = StreamingNormalizer().normalize(raw, out)

    assert count == 2
    assert [row["identifier"] for row in read_lines(out)] == ["a", "b"]


def test_normalize_file_writes_staging_file(tmp_path: Path) -> None:
    raw = write_feed(tmp_path / "feed.xml", ITEM.format(guid="x", n=1))
    staged = tmp_path / "staged" / "feed.jsonl"

    assert StreamingNormalizer().normalize_file(raw, staged, "logi") == 1
    assert json.loads(staged.read_text(encoding="utf-8"))["identifier"] == "x"


def test_missing_raw_file_stages_nothing(tmp_path: Path) -> None:
    out = io.StringIO()
    assert StreamingNormalizer().normalize(tmp_path / "absent.xml", out) == 0
    assert out.getvalue() == ""
