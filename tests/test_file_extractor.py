from neonvibe.services.file_extractor import extract_files


def test_no_markers_yields_empty_map():
    assert extract_files("") == {}
    assert extract_files("Sure, here is a plain answer without any files.") == {}


def test_complete_blocks_keep_content_verbatim():
    text = (
        "Here you go!\n\n"
        '<file name="index.html">\n<html>\n  <body></body>\n</html>\n</file>\n'
        '<file name="styles.css">  body { color: red; }\t\n</file>\n'
        '<file name="js/app.js"></file>'
    )
    files = extract_files(text)
    assert files == {
        "index.html": "\n<html>\n  <body></body>\n</html>\n",
        "styles.css": "  body { color: red; }\t\n",
        "js/app.js": "",
    }


def test_repeated_name_last_complete_block_wins():
    text = '<file name="a.txt">one</file> and <file name="a.txt">two</file>'
    assert extract_files(text) == {"a.txt": "two"}


def test_trailing_partial_block_is_included():
    text = '<file name="index.html">done</file>\n<file name="README.md"># Title\nstill stream'
    assert extract_files(text) == {"index.html": "done", "README.md": "# Title\nstill stream"}


def test_trailing_partial_keeps_half_received_close_marker():
    assert extract_files('<file name="x.js">let a = 1;</fi') == {"x.js": "let a = 1;</fi"}


def test_completed_block_beats_trailing_partial_with_same_name():
    text = '<file name="X">final</file><file name="X">rewr'
    assert extract_files(text) == {"X": "final"}


def test_partial_header_at_end_is_ignored():
    assert extract_files('<file name="a">A</file>\n<file name="s') == {"a": "A"}
    assert extract_files('<file name="a">A</file>\n<file name="s.css"') == {"a": "A"}


def test_malformed_markers_are_skipped_without_error():
    text = '<file name=index.html>nope</file><file name="">empty</file><file name="ok">yes</file>'
    assert extract_files(text) == {"ok": "yes"}


def test_close_marker_terminates_nearest_open_marker():
    text = '<file name="outer">start <file name="inner">body</file> tail'
    assert extract_files(text) == {"inner": "body"}


def test_extraction_is_idempotent_over_growing_prefixes():
    text = '<file name="index.html"><p>hi</p></file><file name="b.css">p{}</file>'
    seen = {}
    for end in range(len(text) + 1):
        files = extract_files(text[:end])
        assert files == extract_files(text[:end])
        seen.update(files)
    assert extract_files(text) == {"index.html": "<p>hi</p>", "b.css": "p{}"}
    assert seen["index.html"] == "<p>hi</p>"


def test_malformed_inner_marker_does_not_hide_a_later_valid_one():
    text = '<file name="a">p<file name="q<file name="b">y</file>'
    assert extract_files(text) == {"b": "y"}
