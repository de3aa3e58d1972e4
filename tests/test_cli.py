import json

import pytest

from formsense import cli, io_utils

PAGE = (
    "<html><body>"
    '<form id="signup">'
    '<label for="email">Email</label><input id="email" type="email" name="email">'
    '<input type="text" name="user"><input type="password" name="password">'
    '<button type="submit">Create account</button>'
    "</form>"
    "</body></html>"
)


@pytest.fixture()
def page_file(tmp_path, monkeypatch):
    monkeypatch.setattr(io_utils, "DATA_DIR", tmp_path / "data")
    path = tmp_path / "page.html"
    path.write_text(PAGE, encoding="utf-8")
    return path


def test_detect_static_page_writes_summary(page_file, tmp_path, capsys):
    cli.main(["detect", "--html", str(page_file), "--quick", "--test-mode", "--run-id", "t1"])

    printed = json.loads(capsys.readouterr().out)
    summary_path = tmp_path / "data" / "t1" / "detect" / "summary.json"
    saved = json.loads(summary_path.read_text(encoding="utf-8"))

    assert saved == printed
    assert saved["mode"] == "quick"
    assert len(saved["containers"]) == 1
    container = saved["containers"][0]
    assert container["container_id"] == "form-0"
    assert container["total_field_count"] == 3
    assert container["candidate"]["id"] == "signup"
    assert container["fields"][0]["test_value"] == "test@example.com"
    assert [button["type"] for button in saved["field_buttons"]] == ["individual"] * 3
    assert saved["detection"]["passes_run"] == []
    assert (tmp_path / "data" / "t1" / "formsense.log").exists()


def test_url_and_html_are_mutually_exclusive(page_file):
    with pytest.raises(SystemExit):
        cli.main(["detect", "--html", str(page_file), "--url", "https://example.com"])


def test_invalid_config_is_reported(page_file, tmp_path):
    config_path = tmp_path / "bad.json"
    config_path.write_text('{"unknown_setting": 1}', encoding="utf-8")

    with pytest.raises(SystemExit):
        cli.main(["detect", "--html", str(page_file), "--config", str(config_path), "--run-id", "t2"])
