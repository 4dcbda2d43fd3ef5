#!/usr/bin/env python3
"""Claude Code Statusline — quota and context usage with ANSI colors.

Line 1: [model] user@host:dir (branch)
Line 2: Opus / Sonnet 7-day sub-limits (higher tier only, fall back to 7d)
Line 3: 5h limit + reset countdown/time, 7d limit + reset (7d: higher tier only)
Line 4: Context tokens from the transcript tail, % of window, compact warning

Any section whose data is unavailable is omitted; line 1 is always printed.

Color coding: green <=50%, yellow 51-80%, red >80%.

Styles:       plain (default) or powerline (--powerline / [display] style)
Config:       ~/.claude/statusline.toml (optional, or $STATUSLINE_CONFIG)
Cache:        /tmp/claude-usage-cache.json (single snapshot, 60s TTL)
Debug:        STATUSLINE_DEBUG=1 logs to stderr
"""

import contextlib
import getpass
import json
import logging
import os
import re
import shutil
import socket
import subprocess
import sys
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

import requests

# ═══════════════════════ CONFIG ═══════════════════════

CACHE_FILE = Path("/tmp/claude-usage-cache.json")
CACHE_TTL = 60                 # seconds
CREDENTIALS_FILE = Path("~/.claude/.credentials.json").expanduser()
KEYCHAIN_SERVICE = "Claude Code-credentials"
USAGE_URL = "https://api.anthropic.com/api/oauth/usage"
OAUTH_BETA = "oauth-2025-04-20"
FETCH_TIMEOUT = 2              # seconds, bounds a single render
CONTEXT_WINDOW = 200_000
AUTO_COMPACT_THRESHOLD = 160_000  # 80% of CONTEXT_WINDOW
TRANSCRIPT_TAIL = 100          # transcript entries scanned for usage
TAIL_BLOCK = 8192              # bytes per backward read of the transcript
DISPLAY_STYLE = "plain"
STYLES = ("plain", "powerline")

# ═══════════════════════ TOML CONFIG ═══════════════════════

def _section(cfg, name):
    s = cfg.get(name)
    return s if isinstance(s, dict) else {}

def _num(section, key, default, minimum=0):
    """Numeric setting, or default when missing, mistyped, or below minimum."""
    v = section.get(key, default)
    if isinstance(v, bool) or not isinstance(v, (int, float)) or v < minimum:
        return default
    return v

def load_config(cfg_path=None):
    """Load optional TOML config, override defaults. Requires tomllib (3.11+) or tomli."""
    global CACHE_FILE, CACHE_TTL, FETCH_TIMEOUT
    global CONTEXT_WINDOW, AUTO_COMPACT_THRESHOLD, TRANSCRIPT_TAIL, DISPLAY_STYLE

    if cfg_path is None:
        cfg_path = os.environ.get("STATUSLINE_CONFIG") or "~/.claude/statusline.toml"
    cfg_path = Path(cfg_path).expanduser()
    if not cfg_path.exists():
        return

    try:
        try:
            import tomllib
        except ImportError:
            import tomli as tomllib  # type: ignore
        with open(cfg_path, "rb") as f:
            cfg = tomllib.load(f)
    except (OSError, ValueError):
        # tomllib.TOMLDecodeError is a ValueError
        return

    c = _section(cfg, "cache")
    CACHE_TTL = _num(c, "ttl", CACHE_TTL)
    if isinstance(c.get("file"), str) and c["file"]:
        CACHE_FILE = Path(c["file"]).expanduser()

    a = _section(cfg, "api")
    # a zero timeout would make requests fail every call
    FETCH_TIMEOUT = _num(a, "timeout", FETCH_TIMEOUT, minimum=0.1)

    x = _section(cfg, "context")
    window = _num(x, "window", None, minimum=1)
    if window is not None:
        CONTEXT_WINDOW = int(window)
        AUTO_COMPACT_THRESHOLD = CONTEXT_WINDOW * 4 // 5
    AUTO_COMPACT_THRESHOLD = int(_num(x, "compact_threshold", AUTO_COMPACT_THRESHOLD))
    TRANSCRIPT_TAIL = int(_num(x, "tail", TRANSCRIPT_TAIL, minimum=1))

    d = _section(cfg, "display")
    if d.get("style") in STYLES:
        DISPLAY_STYLE = d["style"]

load_config()

# ═══════════════════════ LOGGING ═══════════════════════

# stdout is the display, so diagnostics stay silent unless asked for.
log = logging.getLogger("statusline")
log.addHandler(logging.NullHandler())

def setup_logging():
    """Attach a stderr handler when STATUSLINE_DEBUG is set."""
    if not os.environ.get("STATUSLINE_DEBUG"):
        return
    if any(h.get_name() == "statusline-debug" for h in log.handlers):
        return
    handler = logging.StreamHandler()
    handler.set_name("statusline-debug")
    handler.setFormatter(logging.Formatter("[statusline] %(asctime)s %(levelname)s %(message)s"))
    log.addHandler(handler)
    log.setLevel(logging.DEBUG)

# ═══════════════════════ ERRORS ═══════════════════════

class StatuslineError(Exception):
    """Base for every recoverable failure; each one only blanks its own section."""

class CredentialUnavailable(StatuslineError):
    pass

class NetworkUnavailable(StatuslineError):
    """Connection failure or timeout talking to the usage endpoint."""

class FetchInvalid(StatuslineError):
    """Usage response was empty, malformed, or missing the 5-hour window."""

class CacheReadFailure(StatuslineError):
    pass

class TranscriptUnavailable(StatuslineError):
    pass

class TimestampParseFailure(StatuslineError):
    pass

# ═══════════════════════ ANSI / CLASSIFIER ═══════════════════════

R  = "\033[0m"      # Reset
GR = "\033[1;32m"   # Green
YL = "\033[1;33m"   # Yellow
RD = "\033[1;31m"   # Red
MG = "\033[1;35m"   # Magenta
CY = "\033[1;36m"   # Cyan
GY = "\033[1;30m"   # Gray

class Severity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

def classify(pct):
    """Severity band for a 0-100 ratio: <=50 low, <=80 medium, above that high."""
    pct = int(pct)
    if pct <= 50:
        return Severity.LOW
    if pct <= 80:
        return Severity.MEDIUM
    return Severity.HIGH

SEVERITY_COLORS = {Severity.LOW: GR, Severity.MEDIUM: YL, Severity.HIGH: RD}

def cpct(pct, txt):
    """Colorize text by the severity of pct."""
    return f"{SEVERITY_COLORS[classify(pct)]}{txt}{R}"

def fmt_tokens(t):
    """Format tokens: 512, 1.0K, 35.2K (truncated, not rounded)."""
    t = max(0, int(t))
    if t >= 1000:
        return f"{t // 1000}.{t % 1000 // 100}K"
    return str(t)

# ═══════════════════════ TIME ═══════════════════════

SHORT = "short"   # 5-hour window: 2h11m / 45m, 6pm / 6:30pm
LONG = "long"     # 7-day window: 3d4h / 5h, Dec 5

_FRACTION = re.compile(r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.\d+)?(Z|[+-]\d{2}:\d{2})?$")

def parse_iso(s):
    """Parse ISO 8601 to an aware datetime. Handles Z, +00:00, fractional sec."""
    if not s or not isinstance(s, str) or s == "null":
        return None
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        # Older interpreters reject fractional seconds that aren't 3 or 6 digits;
        # drop the fraction but keep any offset
        m = _FRACTION.match(s)
        if not m:
            return None
        try:
            dt = datetime.fromisoformat(m.group(1) + (m.group(2) or "").replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt

def _reset_time(resets_at):
    dt = parse_iso(resets_at)
    if dt is None:
        raise TimestampParseFailure(f"unparsable reset timestamp: {resets_at!r}")
    return dt

def format_countdown(resets_at, granularity=SHORT, now=None):
    """Time left until resets_at, e.g. 2h11m (short) or 3d4h (long).

    Already-reset windows render as 0m. Unparsable timestamps render as ""
    so the caller drops the sub-display.
    """
    try:
        dt = _reset_time(resets_at)
    except TimestampParseFailure as e:
        log.debug("%s", e)
        return ""
    now = time.time() if now is None else now
    secs = int(dt.timestamp() - now)
    if secs <= 0:
        return "0m"
    if granularity == LONG:
        d, h = secs // 86400, secs % 86400 // 3600
        return f"{d}d{h}h" if d else f"{h}h"
    h, m = secs // 3600, secs % 3600 // 60
    return f"{h}h{m}m" if h else f"{m}m"

def format_absolute(resets_at, granularity=SHORT):
    """Local wall-clock reset time: 6pm / 6:30pm (short) or Dec 5 (long)."""
    try:
        dt = _reset_time(resets_at).astimezone()
    except TimestampParseFailure as e:
        log.debug("%s", e)
        return ""
    if granularity == LONG:
        return f"{dt:%b} {dt.day}"
    h12 = dt.hour % 12 or 12
    ampm = "am" if dt.hour < 12 else "pm"
    if dt.minute:
        return f"{h12}:{dt.minute:02d}{ampm}"
    return f"{h12}{ampm}"

def reset_detail(resets_at, granularity, now=None):
    """' 2h11m (6pm)' suffix for a usage metric, or '' without a timestamp."""
    left = format_countdown(resets_at, granularity, now)
    if not left:
        return ""
    at = format_absolute(resets_at, granularity)
    return f" {left} ({at})" if at else f" {left}"

# ═══════════════════════ SNAPSHOT ═══════════════════════

BASIC_TIER = "basic"      # 5-hour window only
HIGHER_TIER = "higher"    # 5-hour + 7-day, optional per-model sub-limits

MODEL_FAMILIES = ("opus", "sonnet")

def _utilization(value):
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value

def _window(payload, key):
    """(utilization, resets_at) of one upstream window object, None where absent."""
    w = payload.get(key)
    if not isinstance(w, dict):
        return None, None
    resets = w.get("resets_at")
    return _utilization(w.get("utilization")), resets if isinstance(resets, str) and resets else None

@dataclass
class UsageSnapshot:
    five_hour: float
    five_hour_resets: str | None = None
    seven_day: float | None = None
    seven_day_resets: str | None = None
    seven_day_opus: float | None = None
    seven_day_sonnet: float | None = None
    fetched_at: float = 0.0

    @classmethod
    def from_response(cls, payload, fetched_at):
        """Normalize an /api/oauth/usage payload. Raises FetchInvalid without a 5h window."""
        if not isinstance(payload, dict):
            raise FetchInvalid("usage response is not an object")
        five_hour, five_hour_resets = _window(payload, "five_hour")
        if five_hour is None:
            raise FetchInvalid("usage response has no five_hour utilization")
        seven_day, seven_day_resets = _window(payload, "seven_day")
        return cls(
            five_hour=five_hour,
            five_hour_resets=five_hour_resets,
            seven_day=seven_day,
            seven_day_resets=seven_day_resets,
            seven_day_opus=_window(payload, "seven_day_opus")[0],
            seven_day_sonnet=_window(payload, "seven_day_sonnet")[0],
            fetched_at=fetched_at,
        )

    @classmethod
    def from_cache(cls, raw):
        if not isinstance(raw, dict):
            raise CacheReadFailure("cache entry is not an object")
        five_hour = _utilization(raw.get("five_hour"))
        if five_hour is None:
            raise CacheReadFailure("cache entry has no five_hour utilization")

        def ts(key):
            v = raw.get(key)
            return v if isinstance(v, str) and v else None

        return cls(
            five_hour=five_hour,
            five_hour_resets=ts("five_hour_resets"),
            seven_day=_utilization(raw.get("seven_day")),
            seven_day_resets=ts("seven_day_resets"),
            seven_day_opus=_utilization(raw.get("seven_day_opus")),
            seven_day_sonnet=_utilization(raw.get("seven_day_sonnet")),
            fetched_at=_utilization(raw.get("timestamp")) or 0,
        )

    def to_cache(self):
        return {
            "timestamp": self.fetched_at,
            "five_hour": self.five_hour,
            "five_hour_resets": self.five_hour_resets,
            "seven_day": self.seven_day,
            "seven_day_resets": self.seven_day_resets,
            "seven_day_opus": self.seven_day_opus,
            "seven_day_sonnet": self.seven_day_sonnet,
        }

    def is_fresh(self, ttl, now=None):
        if not self.fetched_at:
            return False
        now = time.time() if now is None else now
        return now - self.fetched_at < ttl

    @property
    def tier(self):
        """Accounts without any 7-day limit are basic tier."""
        return BASIC_TIER if self.seven_day is None else HIGHER_TIER

    def model_utilization(self, family):
        """7-day utilization for a model family, falling back to the blanket 7-day value."""
        value = getattr(self, f"seven_day_{family}", None)
        return self.seven_day if value is None else value

# ═══════════════════════ CACHE ═══════════════════════

class UsageCache:
    """Single-entry JSON snapshot on disk.

    Writes replace the whole file; reads fail soft, so a torn or concurrently
    replaced file just looks like a cache miss.
    """

    def __init__(self, path=None):
        self.path = Path(path) if path is not None else CACHE_FILE

    def _load(self):
        try:
            text = self.path.read_text()
        except OSError as e:
            raise CacheReadFailure(f"cannot read {self.path}: {e}") from e
        if not text.strip():
            raise CacheReadFailure(f"{self.path} is empty")
        try:
            raw = json.loads(text)
        except ValueError as e:
            raise CacheReadFailure(f"{self.path} is not valid JSON") from e
        return UsageSnapshot.from_cache(raw)

    def read(self):
        """Cached snapshot, or None when missing or unreadable."""
        try:
            return self._load()
        except CacheReadFailure as e:
            log.debug("usage cache miss: %s", e)
            return None

    def write(self, snapshot):
        tmp = self.path.with_name(f"{self.path.name}.{os.getpid()}.tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(snapshot.to_cache()))
            os.replace(tmp, self.path)
        except OSError as e:
            log.debug("usage cache write failed: %s", e)
            with contextlib.suppress(OSError):
                tmp.unlink()
            return False
        return True

    def is_fresh(self, ttl, now=None):
        snapshot = self.read()
        return snapshot is not None and snapshot.is_fresh(ttl, now)

# ═══════════════════════ CREDENTIALS ═══════════════════════

def _extract_token(creds):
    """Access token from parsed credentials (top-level or nested claudeAiOauth)."""
    if not isinstance(creds, dict):
        return None
    tok = creds.get("accessToken")
    if not tok:
        oauth = creds.get("claudeAiOauth") or {}
        tok = oauth.get("accessToken") if isinstance(oauth, dict) else None
    return tok or None

def _token_from_file():
    try:
        creds = json.loads(CREDENTIALS_FILE.read_text())
    except (OSError, ValueError) as e:
        log.debug("no usable credentials file: %s", e)
        return None
    return _extract_token(creds)

def _token_from_keychain():
    """Token from the macOS keychain or libsecret, where available."""
    if sys.platform == "darwin":
        cmd = ["security", "find-generic-password", "-s", KEYCHAIN_SERVICE, "-w"]
    elif sys.platform.startswith("linux") and shutil.which("secret-tool"):
        cmd = ["secret-tool", "lookup", "service", KEYCHAIN_SERVICE]
    else:
        return None
    try:
        r = subprocess.run(cmd, capture_output=True, text=True, timeout=5)
    except (OSError, subprocess.SubprocessError) as e:
        log.debug("keychain lookup failed: %s", e)
        return None
    out = r.stdout.strip()
    if r.returncode != 0 or not out:
        return None
    # keytar stores JSON, but older entries hold the bare token
    try:
        return _extract_token(json.loads(out))
    except ValueError:
        return out

def get_oauth_token():
    """Bearer token from env, credentials file, or platform keychain."""
    tok = os.environ.get("CLAUDE_OAUTH_TOKEN") or _token_from_file() or _token_from_keychain()
    if not tok:
        raise CredentialUnavailable("no OAuth access token found")
    return tok

# ═══════════════════════ FETCH ═══════════════════════

class UsageFetcher:
    """One GET against the usage endpoint, normalized and written back to the cache."""

    def __init__(self, cache, session=None, url=USAGE_URL, timeout=None,
                 credentials=None, clock=time.time):
        self.cache = cache
        self.session = session if session is not None else requests.Session()
        self.url = url
        self.timeout = FETCH_TIMEOUT if timeout is None else timeout
        self.credentials = credentials or get_oauth_token
        self.clock = clock

    def fetch(self, token=None):
        if token is None:
            token = self.credentials()

        headers = {
            "Authorization": f"Bearer {token}",
            "anthropic-beta": OAUTH_BETA,
            "Content-Type": "application/json",
        }
        try:
            resp = self.session.get(self.url, headers=headers, timeout=self.timeout)
        except requests.Timeout as e:
            raise NetworkUnavailable(f"usage request timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            raise NetworkUnavailable(f"usage request failed: {e}") from e

        if resp.status_code != 200:
            raise FetchInvalid(f"usage endpoint returned HTTP {resp.status_code}")
        if not resp.content or not resp.content.strip():
            raise FetchInvalid("usage endpoint returned an empty body")
        try:
            payload = resp.json()
        except ValueError as e:
            raise FetchInvalid("usage response is not JSON") from e

        snapshot = UsageSnapshot.from_response(payload, fetched_at=self.clock())
        if self.cache.write(snapshot):
            log.debug("usage fetched and cached: 5h=%s 7d=%s", snapshot.five_hour, snapshot.seven_day)
        return snapshot

# ═══════════════════════ PROVIDER ═══════════════════════

class UsageProvider:
    """Cache-or-fetch decision; the only thing the display layer asks for usage."""

    def __init__(self, cache, fetcher, ttl=None):
        self.cache = cache
        self.fetcher = fetcher
        self.ttl = CACHE_TTL if ttl is None else ttl

    def get_usage(self):
        if self.cache.is_fresh(self.ttl):
            snapshot = self.cache.read()
            if snapshot is not None:
                return snapshot
        try:
            return self.fetcher.fetch()
        except StatuslineError as e:
            log.debug("usage unavailable: %s", e)
            return None

# ═══════════════════════ CONTEXT ═══════════════════════

@dataclass
class ContextSnapshot:
    tokens: int
    window: int = 200_000
    threshold: int = 160_000

    @property
    def percent(self):
        return self.tokens * 100 // self.window if self.window > 0 else 0

    @property
    def over_threshold(self):
        return self.tokens > self.threshold

def _count(v):
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        return 0
    return max(0, int(v))

def _tail_lines(path, n):
    """Last n lines of path, read in blocks backwards from the end of the file."""
    if n <= 0:
        return []
    try:
        with open(path, "rb") as f:
            f.seek(0, os.SEEK_END)
            pos = f.tell()
            buf = b""
            # n + 1 newlines guarantee n complete lines even with a trailing newline
            while pos > 0 and buf.count(b"\n") <= n:
                step = min(TAIL_BLOCK, pos)
                pos -= step
                f.seek(pos)
                buf = f.read(step) + buf
    except OSError as e:
        raise TranscriptUnavailable(f"cannot read transcript {path}: {e}") from e
    lines = buf.split(b"\n")
    if lines and not lines[-1]:
        lines.pop()
    return [line.decode("utf-8", errors="replace") for line in lines[-n:]]

def estimate_context_tokens(transcript_path, tail=None):
    """Input-side tokens of the latest primary, non-error message with usage.

    Only the last `tail` transcript entries are scanned. If all of them are
    sidechain or API-error entries, the result is None rather than a guess
    from further back.
    """
    if not transcript_path:
        return None
    tail = TRANSCRIPT_TAIL if tail is None else tail
    try:
        lines = _tail_lines(Path(transcript_path), tail)
    except TranscriptUnavailable as e:
        log.debug("%s", e)
        return None

    for line in reversed(lines):
        line = line.strip()
        if not line:
            continue
        try:
            entry = json.loads(line)
        except ValueError:
            continue
        if not isinstance(entry, dict):
            continue
        if entry.get("isSidechain") or entry.get("isApiErrorMessage"):
            continue
        message = entry.get("message")
        usage = message.get("usage") if isinstance(message, dict) else None
        if not isinstance(usage, dict):
            continue
        return (_count(usage.get("input_tokens"))
                + _count(usage.get("cache_read_input_tokens"))
                + _count(usage.get("cache_creation_input_tokens")))
    return None

def read_context(transcript_path):
    tokens = estimate_context_tokens(transcript_path)
    if tokens is None:
        return None
    return ContextSnapshot(tokens, CONTEXT_WINDOW, AUTO_COMPACT_THRESHOLD)

# ═══════════════════════ RENDERING ═══════════════════════

WARN = " ⚠️"
PLACEHOLDER = "--"

class Renderer:
    """Decides what goes on each line; subclasses decide how pieces look."""

    indent = ""

    def metric(self, label, pct, detail="", lead=""):
        raise NotImplementedError

    def line(self, pieces):
        raise NotImplementedError

    def base_line(self, model, user, host, directory, branch=""):
        raise NotImplementedError

    def usage_lines(self, snapshot, now=None):
        if snapshot is None:
            return []
        higher = snapshot.tier == HIGHER_TIER
        lines = []
        if higher:
            lines.append(self.line([
                self.metric(fam.capitalize(), snapshot.model_utilization(fam))
                for fam in MODEL_FAMILIES
            ]))
        pieces = [self.metric("5h", snapshot.five_hour,
                              reset_detail(snapshot.five_hour_resets, SHORT, now))]
        if higher:
            pieces.append(self.metric("7d", snapshot.seven_day,
                                      reset_detail(snapshot.seven_day_resets, LONG, now)))
        lines.append(self.line(pieces))
        return [self.indent + ln for ln in lines]

    def context_line(self, ctx):
        if ctx is None or ctx.tokens == 0:
            return ""
        warn = WARN if ctx.over_threshold else ""
        return self.indent + self.line([self.metric("CTX", ctx.percent, warn, fmt_tokens(ctx.tokens))])

class PlainRenderer(Renderer):
    indent = "  "
    SEP = f" {CY}|{R} "

    def metric(self, label, pct, detail="", lead=""):
        lead = f"{lead} " if lead else ""
        if pct is None:
            return f"{label}: {lead}{GY}{PLACEHOLDER}{R}"
        return f"{label}: {lead}{cpct(pct, f'{int(pct)}%')}{detail}"

    def line(self, pieces):
        return self.SEP.join(pieces)

    def base_line(self, model, user, host, directory, branch=""):
        out = f"{MG}[{model}]{R} {CY}{user}@{host}{R}:{YL}{directory}{R}"
        if branch:
            out += f" {GR}({branch}){R}"
        return out

class PowerlineRenderer(Renderer):
    ARROW = "\ue0b0"
    BRANCH = "\ue0a0"
    FG = 255
    BG = {
        "model": 97, "host": 31, "dir": 136, "branch": 28, "muted": 240,
        Severity.LOW: 28, Severity.MEDIUM: 136, Severity.HIGH: 124,
    }

    def badge(self, text, color):
        return (text, self.BG[color])

    def metric(self, label, pct, detail="", lead=""):
        lead = f"{lead} " if lead else ""
        if pct is None:
            return (f"{label} {lead}{PLACEHOLDER}", self.BG["muted"])
        return (f"{label} {lead}{int(pct)}%{detail}", self.BG[classify(pct)])

    def line(self, pieces):
        out = ""
        for i, (text, bg) in enumerate(pieces):
            out += f"\033[38;5;{self.FG}m\033[48;5;{bg}m {text} "
            if i + 1 < len(pieces):
                out += f"\033[38;5;{bg}m\033[48;5;{pieces[i + 1][1]}m{self.ARROW}"
            else:
                out += f"{R}\033[38;5;{bg}m{self.ARROW}{R}"
        return out

    def base_line(self, model, user, host, directory, branch=""):
        pieces = [
            self.badge(model, "model"),
            self.badge(f"{user}@{host}", "host"),
            self.badge(directory, "dir"),
        ]
        if branch:
            pieces.append(self.badge(f"{self.BRANCH} {branch}", "branch"))
        return self.line(pieces)

def make_renderer(style):
    return PowerlineRenderer() if style == "powerline" else PlainRenderer()

# ═══════════════════════ INPUT / ENVIRONMENT ═══════════════════════

def read_input(stream):
    """Parse the invocation payload; anything unusable becomes {}."""
    try:
        data = json.load(stream)
    except ValueError:
        log.debug("stdin is not valid JSON")
        return {}
    return data if isinstance(data, dict) else {}

def git_branch(cwd):
    try:
        r = subprocess.run(["git", "-C", str(cwd), "branch", "--show-current"],
                           capture_output=True, text=True, timeout=1)
    except (OSError, subprocess.SubprocessError):
        return ""
    return r.stdout.strip() if r.returncode == 0 else ""

def whoami():
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = os.environ.get("USER", "")
    return user, socket.gethostname().split(".")[0]

# ═══════════════════════ MAIN ═══════════════════════

def build_lines(data, renderer, provider=None):
    """All output lines for one render; the base line is always first."""
    model_info = data.get("model")
    model = model_info.get("id") if isinstance(model_info, dict) else None
    if not isinstance(model, str) or not model:
        model = "unknown"
    workspace = data.get("workspace")
    cwd = workspace.get("current_dir") if isinstance(workspace, dict) else None
    if not isinstance(cwd, str) or not cwd:
        cwd = os.getcwd()
    user, host = whoami()
    lines = [renderer.base_line(model, user, host, Path(cwd).name or cwd, git_branch(cwd))]

    if provider is None:
        cache = UsageCache()
        provider = UsageProvider(cache, UsageFetcher(cache))
    try:
        lines.extend(renderer.usage_lines(provider.get_usage()))
    except Exception:
        log.exception("usage section failed")

    try:
        ctx_line = renderer.context_line(read_context(data.get("transcript_path")))
        if ctx_line:
            lines.append(ctx_line)
    except Exception:
        log.exception("context section failed")

    return lines

def main(argv=None):
    setup_logging()
    argv = sys.argv[1:] if argv is None else argv

    style = DISPLAY_STYLE
    if "--powerline" in argv:
        style = "powerline"
    elif "--plain" in argv:
        style = "plain"

    data = read_input(sys.stdin)
    for ln in build_lines(data, make_renderer(style)):
        print(ln)
    return 0

if __name__ == "__main__":
    sys.exit(main())
