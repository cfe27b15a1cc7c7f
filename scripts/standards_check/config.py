"""Typed loader for the packaged defaults/config.yml.

The loaded value is immutable and passed explicitly to every component;
nothing reads configuration from module globals.
"""

from __future__ import annotations

import dataclasses
import re
import shlex
import string
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

FAILURE_MODES = ("fail", "label")

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent / "defaults" / "config.yml"


class ConfigError(RuntimeError):
    """Invalid or unreadable checker configuration."""
    pass


@dataclass(frozen=True)
class LabelConfig:
    name: str = "Noncompliant"
    color: str = "B60205"
    description: str = "PR does not meet quality standards"


@dataclass(frozen=True)
class IgnoreConfig:
    patterns: tuple[str, ...] = ("node_modules/**", "dist/**", "build/**", "*.min.js")
    comment: str = "standards-checker-ignore"


@dataclass(frozen=True)
class RelatedRule:
    """A changed path matching `pattern` pulls in each `related` template.

    Templates are formatted with the pattern's named groups; `{group_singular}`
    is the group value with one trailing "s" removed.
    """

    pattern: str
    related: tuple[str, ...]


DEFAULT_RELATED_RULES = (
    RelatedRule(
        r"(?:^|/)src/controllers/(?:.*/)?(?P<stem>[^/]+?)\.[^./]+$",
        ("src/models/{stem}.ts", "src/routes/{stem}.ts", "src/validators/{stem}.ts"),
    ),
    RelatedRule(
        r"(?:^|/)src/models/(?:.*/)?(?P<stem>[^/]+?)\.[^./]+$",
        ("src/controllers/{stem}.ts",),
    ),
    RelatedRule(
        r"(?:^|/)src/routes/(?:.*/)?(?P<stem>[^/]+?)\.[^./]+$",
        ("src/controllers/{stem}.ts", "src/validators/{stem}.ts"),
    ),
    RelatedRule(
        r"(?:^|/)db/migrations/(?:.*/)?[^/_]*_(?P<table>[^/]+?)\.ts$",
        ("src/models/{table_singular}.ts", "src/models/{table}.ts"),
    ),
)


@dataclass(frozen=True)
class ContextConfig:
    include_extensions: tuple[str, ...] = (
        ".js", ".ts", ".tsx", ".jsx", ".json", ".sql", ".yml", ".yaml", ".py",
    )
    excluded_paths: tuple[str, ...] = (
        "node_modules/", "dist/", "build/", "coverage/", "package-lock.json",
    )
    max_diff_chars: int = 100_000
    max_file_chars: int = 20_000
    related_files: tuple[RelatedRule, ...] = DEFAULT_RELATED_RULES
    max_related_file_chars: int = 100_000
    max_related_prompt_chars: int = 10_000
    pattern_dirs: tuple[str, ...] = ("src/controllers", "src/models", "src/routes", "db/migrations")
    max_example_chars: int = 5_000
    directory_roots: tuple[str, ...] = ("src",)
    max_tree_entries: int = 100


@dataclass(frozen=True)
class ModelConfig:
    id: str | None = None
    max_tokens: int = 16_000


@dataclass(frozen=True)
class AnalyzerConfig:
    command: tuple[str, ...] = ()
    timeout_seconds: int = 600


@dataclass(frozen=True)
class CheckerConfig:
    bot_logins: tuple[str, ...] = ("github-actions", "github-actions[bot]")
    failure_mode: str = "fail"
    label: LabelConfig = field(default_factory=LabelConfig)
    ignore: IgnoreConfig = field(default_factory=IgnoreConfig)
    context: ContextConfig = field(default_factory=ContextConfig)
    model: ModelConfig = field(default_factory=ModelConfig)
    analyzer: AnalyzerConfig = field(default_factory=AnalyzerConfig)
    standards_file: str | None = None


def _require_mapping(value: Any, ctx: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ConfigError(f"{ctx}: expected mapping")
    return value


def _require_list(value: Any, ctx: str) -> list[Any]:
    if not isinstance(value, list):
        raise ConfigError(f"{ctx}: expected list")
    return value


def _require_str(value: Any, ctx: str) -> str:
    if not isinstance(value, str):
        raise ConfigError(f"{ctx}: expected string")
    s = value.strip()
    if not s:
        raise ConfigError(f"{ctx}: must be non-empty")
    return s


def _require_str_tuple(value: Any, ctx: str) -> tuple[str, ...]:
    raw = _require_list(value, ctx)
    return tuple(_require_str(item, f"{ctx}[{idx}]") for idx, item in enumerate(raw))


def _require_positive_int(value: Any, ctx: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{ctx}: expected integer")
    if value < 1:
        raise ConfigError(f"{ctx}: must be >= 1")
    return value


def _optional_str(value: Any, ctx: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(f"{ctx}: expected string")
    s = value.strip()
    return s or None


def _require_failure_mode(value: Any, ctx: str) -> str:
    mode = _require_str(value, ctx).lower()
    if mode not in FAILURE_MODES:
        raise ConfigError(f"{ctx}: must be one of {', '.join(FAILURE_MODES)}")
    return mode


def _require_related_rules(value: Any, ctx: str) -> tuple[RelatedRule, ...]:
    rules: list[RelatedRule] = []
    for idx, item in enumerate(_require_list(value, ctx)):
        item_ctx = f"{ctx}[{idx}]"
        rule = _require_mapping(item, item_ctx)
        pattern = _require_str(rule.get("pattern"), f"{item_ctx}.pattern")
        try:
            groups = set(re.compile(pattern).groupindex)
        except re.error as e:
            raise ConfigError(f"{item_ctx}.pattern: invalid regex: {e}") from e
        related = _require_str_tuple(rule.get("related"), f"{item_ctx}.related")
        allowed = groups | {f"{g}_singular" for g in groups}
        for template in related:
            try:
                names = {name for _, name, _, _ in string.Formatter().parse(template) if name is not None}
            except ValueError as e:
                raise ConfigError(f"{item_ctx}.related: invalid template {template!r}: {e}") from e
            unknown = names - allowed
            if unknown:
                raise ConfigError(f"{item_ctx}.related: unknown placeholder {sorted(unknown)[0]!r} in {template!r}")
        rules.append(RelatedRule(pattern=pattern, related=related))
    return tuple(rules)


def _load_yaml(path: Path) -> Any:
    try:
        return yaml.safe_load(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise ConfigError(f"missing config file: {path}") from None
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}") from e


def _section(cfg: dict[str, Any], key: str) -> dict[str, Any]:
    raw = cfg.get(key)
    if raw is None:
        return {}
    return _require_mapping(raw, f"config.{key}")


def config_from_dict(raw: Any) -> CheckerConfig:
    if raw is None:
        raw = {}
    cfg = _require_mapping(raw, "config")
    defaults = CheckerConfig()

    bot_logins = defaults.bot_logins
    if cfg.get("bot_logins") is not None:
        bot_logins = _require_str_tuple(cfg["bot_logins"], "config.bot_logins")
        if not bot_logins:
            raise ConfigError("config.bot_logins: must be non-empty")

    failure_mode = defaults.failure_mode
    if cfg.get("failure_mode") is not None:
        failure_mode = _require_failure_mode(cfg["failure_mode"], "config.failure_mode")

    label_cfg = _section(cfg, "label")
    label = LabelConfig(
        name=_require_str(label_cfg.get("name", defaults.label.name), "config.label.name"),
        color=_require_str(label_cfg.get("color", defaults.label.color), "config.label.color").lstrip("#"),
        description=_require_str(
            label_cfg.get("description", defaults.label.description), "config.label.description"
        ),
    )

    ignore_cfg = _section(cfg, "ignore")
    ignore = IgnoreConfig(
        patterns=(
            _require_str_tuple(ignore_cfg["patterns"], "config.ignore.patterns")
            if ignore_cfg.get("patterns") is not None
            else defaults.ignore.patterns
        ),
        comment=_require_str(ignore_cfg.get("comment", defaults.ignore.comment), "config.ignore.comment"),
    )

    context_cfg = _section(cfg, "context")
    context = ContextConfig(
        include_extensions=(
            _require_str_tuple(context_cfg["include_extensions"], "config.context.include_extensions")
            if context_cfg.get("include_extensions") is not None
            else defaults.context.include_extensions
        ),
        excluded_paths=(
            _require_str_tuple(context_cfg["excluded_paths"], "config.context.excluded_paths")
            if context_cfg.get("excluded_paths") is not None
            else defaults.context.excluded_paths
        ),
        max_diff_chars=_require_positive_int(
            context_cfg.get("max_diff_chars", defaults.context.max_diff_chars),
            "config.context.max_diff_chars",
        ),
        max_file_chars=_require_positive_int(
            context_cfg.get("max_file_chars", defaults.context.max_file_chars),
            "config.context.max_file_chars",
        ),
        related_files=(
            _require_related_rules(context_cfg["related_files"], "config.context.related_files")
            if context_cfg.get("related_files") is not None
            else defaults.context.related_files
        ),
        max_related_file_chars=_require_positive_int(
            context_cfg.get("max_related_file_chars", defaults.context.max_related_file_chars),
            "config.context.max_related_file_chars",
        ),
        max_related_prompt_chars=_require_positive_int(
            context_cfg.get("max_related_prompt_chars", defaults.context.max_related_prompt_chars),
            "config.context.max_related_prompt_chars",
        ),
        pattern_dirs=(
            _require_str_tuple(context_cfg["pattern_dirs"], "config.context.pattern_dirs")
            if context_cfg.get("pattern_dirs") is not None
            else defaults.context.pattern_dirs
        ),
        max_example_chars=_require_positive_int(
            context_cfg.get("max_example_chars", defaults.context.max_example_chars),
            "config.context.max_example_chars",
        ),
        directory_roots=(
            _require_str_tuple(context_cfg["directory_roots"], "config.context.directory_roots")
            if context_cfg.get("directory_roots") is not None
            else defaults.context.directory_roots
        ),
        max_tree_entries=_require_positive_int(
            context_cfg.get("max_tree_entries", defaults.context.max_tree_entries),
            "config.context.max_tree_entries",
        ),
    )

    model_cfg = _section(cfg, "model")
    model = ModelConfig(
        id=_optional_str(model_cfg.get("id"), "config.model.id"),
        max_tokens=_require_positive_int(
            model_cfg.get("max_tokens", defaults.model.max_tokens), "config.model.max_tokens"
        ),
    )

    analyzer_cfg = _section(cfg, "analyzer")
    command: tuple[str, ...] = ()
    raw_command = analyzer_cfg.get("command")
    if isinstance(raw_command, str):
        command = tuple(shlex.split(raw_command))
    elif raw_command is not None:
        command = _require_str_tuple(raw_command, "config.analyzer.command")
    analyzer = AnalyzerConfig(
        command=command,
        timeout_seconds=_require_positive_int(
            analyzer_cfg.get("timeout_seconds", defaults.analyzer.timeout_seconds),
            "config.analyzer.timeout_seconds",
        ),
    )

    return CheckerConfig(
        bot_logins=bot_logins,
        failure_mode=failure_mode,
        label=label,
        ignore=ignore,
        context=context,
        model=model,
        analyzer=analyzer,
        standards_file=_optional_str(cfg.get("standards_file"), "config.standards_file"),
    )


def load_config(path: Path | None = None) -> CheckerConfig:
    return config_from_dict(_load_yaml(path or DEFAULT_CONFIG_PATH))


def apply_env_overrides(config: CheckerConfig, env: Mapping[str, str]) -> CheckerConfig:
    """Return a copy with workflow environment overrides applied."""
    changes: dict[str, Any] = {}

    if env.get("FAILURE_MODE"):
        changes["failure_mode"] = _require_failure_mode(env["FAILURE_MODE"], "FAILURE_MODE")
    if env.get("NONCOMPLIANT_LABEL"):
        changes["label"] = dataclasses.replace(
            config.label, name=_require_str(env["NONCOMPLIANT_LABEL"], "NONCOMPLIANT_LABEL")
        )
    if env.get("STANDARDS_FILE"):
        changes["standards_file"] = env["STANDARDS_FILE"].strip()

    model = config.model
    if env.get("MODEL_ID"):
        model = dataclasses.replace(model, id=env["MODEL_ID"].strip())
    if env.get("MAX_TOKENS"):
        try:
            max_tokens = int(env["MAX_TOKENS"])
        except ValueError:
            raise ConfigError(f"MAX_TOKENS: expected integer, got {env['MAX_TOKENS']!r}") from None
        model = dataclasses.replace(model, max_tokens=_require_positive_int(max_tokens, "MAX_TOKENS"))
    if model != config.model:
        changes["model"] = model

    if env.get("ANALYZER_COMMAND"):
        changes["analyzer"] = dataclasses.replace(
            config.analyzer, command=tuple(shlex.split(env["ANALYZER_COMMAND"]))
        )

    return dataclasses.replace(config, **changes) if changes else config
