"""Configuration — frozen dataclasses built from YAML, env vars and CLI args."""

import argparse
import logging
import os
from dataclasses import dataclass, field

import yaml

logger = logging.getLogger(__name__)

VERSION = "0.3.0"

ENV_PREFIX = "MMLOGMON_"


class ConfigError(Exception):
    """Raised for settings that make the run impossible."""


def _parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes")


def _parse_list(value) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    return [part.strip() for part in str(value).split(",") if part.strip()]


def _parse_pattern(value) -> str | None:
    # YAML hands back ints for unquoted patterns such as `begin: 2024`
    if value is None or value == "":
        return None
    return str(value)


@dataclass(frozen=True)
class AggregationPolicy:
    max_lines: int = -1
    min_lines: int = 1
    timeout_ms: int = 1
    start_at_end: bool = False
    reopen: bool = False

    @property
    def timeout(self) -> float:
        """Timeout in seconds, as used by queue waits."""
        return self.timeout_ms / 1000.0


@dataclass(frozen=True)
class Presentation:
    username: str = ""
    prefix: str = ":warning:"
    color: str = "#FF0000"
    syntax: str = ""
    attach: bool = True


@dataclass(frozen=True)
class Settings:
    url: str = ""
    files: tuple[str, ...] = ()
    globs: tuple[str, ...] = ()
    begin: str | None = None
    end: str | None = None
    exclude: tuple[str, ...] = ()
    policy: AggregationPolicy = field(default_factory=AggregationPolicy)
    presentation: Presentation = field(default_factory=Presentation)
    poll_interval: float = 0.25
    http_timeout: float = 10.0
    debug: bool = False


def load_yaml_config(path: str | None) -> dict:
    """Load settings from a YAML file. Returns an empty dict if no path."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    logger.info("Loaded YAML config from %s", path)
    return data


def build_cli_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mmlogmon",
        description="Monitor logs and send updates to a chat webhook",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument("--config", default=None, help="Path to a YAML settings file")
    parser.add_argument("-d", "--debug", action="store_true", default=None,
                        help="Enable debug logging")
    parser.add_argument("-f", "--file", dest="files", action="append", default=None,
                        help="Path to log file to watch (repeatable)")
    parser.add_argument("-g", "--glob", dest="globs", action="append", default=None,
                        help="Glob pattern of log files to watch (repeatable)")
    parser.add_argument("-b", "--begin", default=None,
                        help="Regex marking the first line of a log entry")
    parser.add_argument("-e", "--end", default=None,
                        help="Regex marking the last line of a log entry")
    parser.add_argument("-x", "--exclude", action="append", default=None,
                        help="Regex; entries with a matching line are not sent (repeatable)")
    parser.add_argument("--maxlines", "--max", dest="max_lines", type=int, default=None,
                        help="Maximum lines per entry, -1 for no limit")
    parser.add_argument("--minlines", "--min", dest="min_lines", type=int, default=None,
                        help="Minimum lines buffered before an entry may be sent")
    parser.add_argument("-t", "--timeout", dest="timeout_ms", type=int, default=None,
                        help="Milliseconds to wait for more lines before sending, 0 sends each chunk")
    parser.add_argument("--start-at-end", "--se", dest="start_at_end", action="store_true",
                        default=None, help="Start tailing at the end of the file")
    parser.add_argument("-F", "--reopen", action="store_true", default=None,
                        help="Reopen the file if it is rotated (tail -F)")
    parser.add_argument("--url", default=None, help="Webhook URL")
    parser.add_argument("-u", "--username", default=None, help="Username to post as")
    parser.add_argument("--color", default=None, help="Attachment sidebar color")
    parser.add_argument("-p", "--prefix", default=None, help="Prefix for messages")
    parser.add_argument("--syntax", default=None, help="Syntax tag for plain-text code blocks")
    parser.add_argument("--no-attach", dest="no_attach", action="store_true", default=None,
                        help="Post logs as text instead of an attachment")
    parser.add_argument("--poll-interval", type=float, default=None,
                        help="Seconds between file checks when no change event arrives")
    parser.add_argument("--http-timeout", type=float, default=None,
                        help="Seconds before a webhook POST is abandoned")
    return parser


def _env(name: str):
    return os.environ.get(ENV_PREFIX + name)


def _pick(cli_value, env_value, yaml_value, default):
    """Return the first value that is set: CLI, then env, then YAML, then default."""
    for value in (cli_value, env_value, yaml_value):
        if value is not None:
            return value
    return default


def load_config(argv: list[str] | None = None) -> Settings:
    """Build Settings from defaults <- YAML <- env vars <- CLI args.

    Pass argv for testability; when None, argparse reads sys.argv.
    Raises ConfigError for settings the run cannot start with.
    """
    args = build_cli_parser().parse_args(argv)
    data = load_yaml_config(args.config or _env("CONFIG"))

    policy_defaults = AggregationPolicy()
    view_defaults = Presentation()
    defaults = Settings()

    try:
        max_lines = int(_pick(args.max_lines, _env("MAX_LINES"),
                              data.get("max_lines"), policy_defaults.max_lines))
        min_lines = int(_pick(args.min_lines, _env("MIN_LINES"),
                              data.get("min_lines"), policy_defaults.min_lines))
        timeout_ms = int(_pick(args.timeout_ms, _env("TIMEOUT"),
                               data.get("timeout"), policy_defaults.timeout_ms))
        poll_interval = float(_pick(args.poll_interval, _env("POLL_INTERVAL"),
                                    data.get("poll_interval"), defaults.poll_interval))
        http_timeout = float(_pick(args.http_timeout, _env("HTTP_TIMEOUT"),
                                   data.get("http_timeout"), defaults.http_timeout))
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid numeric setting: {e}") from e

    if timeout_ms < 0:
        raise ConfigError(f"timeout must be >= 0 milliseconds, got {timeout_ms}")
    if min_lines < 1:
        logger.debug("min_lines=%d normalised to 1", min_lines)
        min_lines = 1
    if poll_interval <= 0:
        raise ConfigError(f"poll_interval must be > 0, got {poll_interval}")

    policy = AggregationPolicy(
        max_lines=max_lines,
        min_lines=min_lines,
        timeout_ms=timeout_ms,
        start_at_end=_parse_bool(_pick(args.start_at_end, _env("START_AT_END"),
                                       data.get("start_at_end"), False)),
        reopen=_parse_bool(_pick(args.reopen, _env("REOPEN"), data.get("reopen"), False)),
    )

    if args.no_attach:
        attach = False
    else:
        attach = _parse_bool(_pick(None, _env("ATTACH"), data.get("attach"), True))

    presentation = Presentation(
        username=str(_pick(args.username, _env("USERNAME"),
                           data.get("username"), view_defaults.username)),
        prefix=str(_pick(args.prefix, _env("PREFIX"), data.get("prefix"), view_defaults.prefix)),
        color=str(_pick(args.color, _env("COLOR"), data.get("color"), view_defaults.color)),
        syntax=str(_pick(args.syntax, _env("SYNTAX"), data.get("syntax"), view_defaults.syntax)),
        attach=attach,
    )

    settings = Settings(
        url=str(_pick(args.url, _env("URL"), data.get("url"), "")),
        files=tuple(_parse_list(_pick(args.files, _env("FILES"), data.get("files"), None))),
        globs=tuple(_parse_list(_pick(args.globs, _env("GLOBS"), data.get("globs"), None))),
        begin=_parse_pattern(_pick(args.begin, _env("BEGIN"), data.get("begin"), None)),
        end=_parse_pattern(_pick(args.end, _env("END"), data.get("end"), None)),
        exclude=tuple(_parse_list(_pick(args.exclude, _env("EXCLUDE"),
                                        data.get("exclude"), None))),
        policy=policy,
        presentation=presentation,
        poll_interval=poll_interval,
        http_timeout=http_timeout,
        debug=_parse_bool(_pick(args.debug, _env("DEBUG"), data.get("debug"), False)),
    )
    validate(settings)
    return settings


def validate(settings: Settings):
    """Reject settings that cannot start a run."""
    if not settings.files and not settings.globs:
        raise ConfigError("File or glob must be specified")
    if not settings.url:
        raise ConfigError("Webhook URL must be specified")
