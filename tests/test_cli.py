"""Tests for the command-line interface."""

from __future__ import annotations

import json

import pytest
import yaml
from conftest import build_automation, edge, node, stage_branch_automation

from pilot_automation.cli import build_parser, main
from pilot_automation.core.server import AutomationServer


@pytest.fixture
def automation_file(tmp_path):
    path = tmp_path / "automation.yaml"
    path.write_text(yaml.safe_dump(stage_branch_automation().to_document()), encoding="utf-8")
    return path


def test_no_command_prints_help(capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        main([])
    assert excinfo.value.code == 0
    assert "pilot-automation" in capsys.readouterr().out


def test_parser_run_options() -> None:
    args = build_parser().parse_args(["run", "a.yaml", "--test", "--payload", "{}", "--json"])
    assert args.command == "run"
    assert args.test and args.json
    assert args.config is None


class TestValidate:
    def test_valid_document(self, automation_file, capsys) -> None:
        assert main(["validate", str(automation_file)]) == 0
        assert "is valid" in capsys.readouterr().out

    def test_document_with_errors(self, tmp_path, capsys) -> None:
        document = build_automation(
            [node("t", "trigger-manual"), node("a", "logic-noop"), node("b", "logic-noop")],
            [edge("t", "a"), edge("t", "b")],
        ).to_document()
        path = tmp_path / "broken.json"
        path.write_text(json.dumps(document), encoding="utf-8")

        assert main(["validate", str(path)]) == 1
        assert "Validation failed" in capsys.readouterr().out

    def test_unknown_node_type(self, tmp_path, capsys) -> None:
        path = tmp_path / "unknown.yaml"
        path.write_text(
            yaml.safe_dump({"name": "x", "nodes": [{"id": "n", "type": "action-fax"}]}),
            encoding="utf-8",
        )
        assert main(["validate", str(path)]) == 1
        assert "Unknown node type: action-fax" in capsys.readouterr().out

    def test_missing_file(self, tmp_path, capsys) -> None:
        assert main(["validate", str(tmp_path / "nope.yaml")]) == 1
        assert "Error:" in capsys.readouterr().out


class TestRun:
    def test_json_output(self, automation_file, capsys) -> None:
        code = main(
            ["run", str(automation_file), "--payload", '{"lead": {"stage": "new"}}', "--json"]
        )
        assert code == 0
        run = json.loads(capsys.readouterr().out)
        assert run["status"] == "succeeded"
        assert run["context"]["stage"] == "contacted"

    def test_payload_from_file(self, automation_file, tmp_path, capsys) -> None:
        payload = tmp_path / "payload.json"
        payload.write_text('{"lead": {"stage": "lost"}}', encoding="utf-8")
        assert main(["run", str(automation_file), "--payload", f"@{payload}", "--test"]) == 0
        out = capsys.readouterr().out
        assert "nothing" in out
        assert "External calls performed: no" in out

    def test_failed_run_exit_code(self, tmp_path) -> None:
        document = build_automation(
            [node("t", "trigger-manual"), node("m", "action-email", subject="Hi", body="x")],
            [edge("t", "m")],
        ).to_document()
        path = tmp_path / "email.yaml"
        path.write_text(yaml.safe_dump(document), encoding="utf-8")
        assert main(["run", str(path)]) == 1

    def test_payload_must_be_object(self, automation_file, capsys) -> None:
        assert main(["run", str(automation_file), "--payload", "[1, 2]"]) == 1
        assert "Payload must be a JSON object" in capsys.readouterr().out


class TestTemplates:
    def test_list(self, capsys) -> None:
        assert main(["templates", "--category", "integrations"]) == 0
        out = capsys.readouterr().out
        assert "crm-sync" in out
        assert "takeover-alert" not in out

    def test_unknown_category(self, capsys) -> None:
        assert main(["templates", "--category", "gardening"]) == 1
        assert "Unknown category: gardening" in capsys.readouterr().out

    def test_instantiate_to_file(self, tmp_path) -> None:
        output = tmp_path / "lead-email.yaml"
        assert main(["templates", "--instantiate", "new-lead-email", "-o", str(output)]) == 0
        document = yaml.safe_load(output.read_text(encoding="utf-8"))
        assert document["trigger_type"] == "event"
        assert document["enabled"] is False
        assert main(["validate", str(output)]) == 0

    def test_instantiate_unknown(self, capsys) -> None:
        assert main(["templates", "--instantiate", "nope"]) == 1
        assert "Unknown template: nope" in capsys.readouterr().out


def test_serve_loads_configured_automations(tmp_path, monkeypatch) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        yaml.safe_dump({"automations": [stage_branch_automation().to_document()]}),
        encoding="utf-8",
    )
    served = []

    def fake_serve(self) -> None:
        served.append((self._config.host, self._config.port))

    monkeypatch.setattr(AutomationServer, "serve", fake_serve)

    assert main(["serve", "-c", str(config_path), "--host", "127.0.0.1", "-p", "9001"]) == 0
    assert served == [("127.0.0.1", 9001)]
