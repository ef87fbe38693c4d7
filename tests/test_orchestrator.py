import json
from pathlib import Path

import yaml

from orchestrator.main import main


def write_config(tmp_path: Path, **naming) -> Path:
    config = {
        "paths": {
            "storage_root": "data/receipts",
            "watch_folder": "data/watch",
            "upload_staging": "data/uploads",
            "logs": "logs",
        },
        "databases": {"metadata": "data/receipt_vault.sqlite", "state": "data/state.sqlite"},
        "naming": naming or {"default_pattern": "{date}_{owner}_{vendor}_{amount}_{category}_{index}"},
        "watch": {"enabled": True, "interval_minutes": 30},
    }
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(config), encoding="utf-8")
    return path


def test_set_and_show_pattern(tmp_path: Path, capsys) -> None:
    config_path = write_config(tmp_path)

    assert main(["--config", str(config_path), "set-pattern", "{vendor}_{amount}"]) == 0
    capsys.readouterr()
    assert main(["--config", str(config_path), "show-pattern"]) == 0
    shown = json.loads(capsys.readouterr().out)

    assert shown["pattern"] == "{vendor}_{amount}"
    assert shown["default_pattern"] == "{date}_{owner}_{vendor}_{amount}_{category}_{index}"


def test_invalid_pattern_is_rejected(tmp_path: Path, capsys) -> None:
    config_path = write_config(tmp_path)

    assert main(["--config", str(config_path), "set-pattern", "{date}_{ext}"]) == 2
    assert "{ext}" in capsys.readouterr().err
    assert main(["--config", str(config_path), "rename-all", "--pattern", "{unknown}"]) == 2


def test_invalid_default_pattern_fails_startup(tmp_path: Path, capsys) -> None:
    config_path = write_config(tmp_path, default_pattern="CON_{date}")

    assert main(["--config", str(config_path), "show-pattern"]) == 2
    assert "default_pattern" in capsys.readouterr().err


def test_batch_commands_report_operation_summary(tmp_path: Path, capsys) -> None:
    config_path = write_config(tmp_path)

    assert main(["--config", str(config_path), "rename-all"]) == 0
    summary = json.loads(capsys.readouterr().out)
    assert summary["total_records"] == 0
    assert summary["errors"] == []
    assert summary["operation_id"].startswith("rename_all")

    (tmp_path / "data" / "watch").mkdir(parents=True)
    (tmp_path / "data" / "watch" / "receipt.pdf").write_bytes(b"%PDF-1.4")
    assert main(["--config", str(config_path), "trigger-scan"]) == 0
    scan = json.loads(capsys.readouterr().out)
    assert scan["ran"] is True
    assert scan["records_created"] == 1

    assert main(["--config", str(config_path), "watch-status"]) == 0
    status = json.loads(capsys.readouterr().out)
    assert status["processed_files"] == 1
    assert status["is_scanning"] is False

    assert main(["--config", str(config_path), "clear-processed"]) == 0
    assert json.loads(capsys.readouterr().out) == {"removed_files": 1}
