import pytest

from modload import Present, REMOVED
from modload.modload_serialize import deserialize, detect_format, encoding_from_content_type, load_options_file


def test_detect_format_by_path_content_type_and_data():
    assert detect_format(path="opts.yml") == "yaml"
    assert detect_format(path="opts.JSON") == "json"
    assert detect_format(path="opts.toml") == "toml"
    assert detect_format(content_type="application/json") == "json"
    assert detect_format(content_type="application/x-yaml") == "yaml"
    assert detect_format(data_hint='  {"a": 1}') == "json"
    assert detect_format(data_hint="a: 1") == "yaml"
    assert detect_format() is None


def test_encoding_from_content_type():
    assert encoding_from_content_type("text/plain; charset=ISO-8859-1") == "ISO-8859-1"
    assert encoding_from_content_type('text/plain; charset="utf-8"') == "utf-8"
    assert encoding_from_content_type("text/plain") is None
    assert encoding_from_content_type(None) is None


def test_deserialize_formats():
    assert deserialize('{"a": [1, 2]}', fmt="json") == {"a": [1, 2]}
    assert deserialize(b"a: 1\nb: [x, y]\n", fmt="yaml") == {"a": 1, "b": ["x", "y"]}
    assert deserialize('default_env = false\n[overrides.x]\nvalue = 3\n', fmt="toml") == {
        "default_env": False, "overrides": {"x": {"value": 3}},
    }


def test_deserialize_rejects_malformed_documents():
    with pytest.raises(ValueError):
        deserialize("{not json", fmt="json")
    with pytest.raises(ValueError):
        deserialize("a = ", fmt="toml")
    with pytest.raises(ValueError):
        deserialize("x", fmt="xml")


def test_load_options_file_yaml(tmp_path):
    p = tmp_path / "opts.yaml"
    p.write_text(
        "default_env: true\n"
        "overrides:\n"
        "  answer: {value: 41}\n"
        "  print: removed\n",
        encoding="utf-8",
    )
    opts = load_options_file(str(p))
    assert opts["default_env"] is True
    assert opts["overrides"]["answer"] == Present(41)
    assert opts["overrides"]["print"] is REMOVED


def test_load_options_file_json(tmp_path):
    p = tmp_path / "opts.json"
    p.write_text('{"overrides": {"open": {"removed": true}}}', encoding="utf-8")
    assert load_options_file(str(p)) == {"overrides": {"open": REMOVED}}
