"""設定ファイル読み込み"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .config import IdempotencyConfig
from .exceptions import IdempotencyError, IdempotencyErrorCodes

SECTION = "idempotency"


def _read_section(path: Path) -> dict[str, Any]:
    """YAML ファイルから idempotency セクションを取り出す。セクションがなければ空辞書。"""
    try:
        document = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise IdempotencyError(
            code=IdempotencyErrorCodes.READ_FILE,
            message=f"Failed to read config file: {path}",
            cause=e,
        ) from e
    except yaml.YAMLError as e:
        raise IdempotencyError(
            code=IdempotencyErrorCodes.PARSE_YAML,
            message=f"Failed to parse YAML: {path}",
            cause=e,
        ) from e
    if document is None:
        return {}
    section = document.get(SECTION) if isinstance(document, dict) else document
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise IdempotencyError(
            code=IdempotencyErrorCodes.VALIDATION,
            message=f"'{SECTION}' section must be a mapping: {path}",
        )
    return section


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """base と override をディープマージした新しい辞書を返す。override が優先。"""
    result: dict[str, Any] = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load(base_path: Path, env_path: Path | None = None) -> IdempotencyConfig:
    """設定ファイルの idempotency セクションを読み込んで IdempotencyConfig を返す。

    base_path: ベース設定ファイルパス（必須）
    env_path: 環境別設定ファイルパス（オプション）。存在する場合はベースにマージ。
    """
    section = _read_section(base_path)
    if env_path is not None and env_path.exists():
        section = deep_merge(section, _read_section(env_path))
    try:
        return IdempotencyConfig.model_validate(section)
    except ValidationError as e:
        raise IdempotencyError(
            code=IdempotencyErrorCodes.VALIDATION,
            message=f"Config validation failed: {e}",
            cause=e,
        ) from e
