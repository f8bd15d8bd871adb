"""
Tests for the command-line entry point
"""

import json
from unittest.mock import patch

import pytest
from fakes import ScriptedLLM, final, tool_call

from webpilot import tools as t
from webpilot.__main__ import main


def run_cli(argv, llm, image_store):
    with patch("sys.argv", ["webpilot", *argv]), patch(
        "webpilot.__main__.load_dotenv"
    ), patch("webpilot.__main__.create_image_store", return_value=image_store), patch(
        "webpilot.service.create_llm_provider", return_value=llm
    ):
        with pytest.raises(SystemExit) as exc_info:
            main()
    return exc_info.value.code


def test_cli_prints_json_result(driver, image_store, capsys):
    llm = ScriptedLLM(
        [tool_call(t.NAVIGATE, url="https://example.com"), final("Title: Example Domain")]
    )

    code = run_cli(
        ["Go to https://example.com and read the page title", "--headless", "--json", "--quiet"],
        llm,
        image_store,
    )

    assert code == 0
    out = capsys.readouterr().out
    payload = json.loads(out[out.index("{") :])
    assert payload["status"] == "completed"
    assert payload["final_output"] == "Title: Example Domain"


def test_cli_rejects_short_prompt(driver, image_store, capsys):
    code = run_cli(["hi", "--quiet"], ScriptedLLM(), image_store)

    assert code == 1
    error = json.loads(capsys.readouterr().err)
    assert error["kind"] == "validation"
    driver.starter.start.assert_not_awaited()


def test_cli_stopped_run_exits_2(driver, image_store):
    llm = ScriptedLLM([tool_call(t.CLICK, selector="button[type=submit]")])

    code = run_cli(
        ["Go to https://example.com/contact and click the button", "--quiet", "--mode", "unified"],
        llm,
        image_store,
    )

    assert code == 2
