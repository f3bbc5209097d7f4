"""
EthicsGate Policy Store

Loads, validates, merges and watches policy documents (YAML rule bundles
with thresholds and an enforcement mode).

Loading rules:
- Every document is validated against PolicyDocument before acceptance and
  every rule pattern is compiled at load time
- A document that fails validation is rejected with a readable reason and
  excluded; other documents still load
- If the only requested document fails, the built-in default policy is
  used instead

Merging N policies:
- Rules are a union keyed by id; the first occurrence of an id wins, so
  rule selection depends on input order
- Thresholds are the elementwise minimum (most restrictive governs)
- Enforcement mode is the strictest under warn < error < block
Threshold and mode merging are order independent.
"""

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import yaml
from pydantic import ValidationError
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ethicsgate.config import DEFAULT_POLICY_FILE
from ethicsgate.config.models import PolicyDocument, format_validation_error
from ethicsgate.detection.catalogue import PatternCatalogue, build_rule
from ethicsgate.detection.matcher import PatternSyntaxError
from ethicsgate.models import Category, EnforcementMode, RiskMetrics, Rule

logger = logging.getLogger(__name__)

POLICY_SUFFIXES = (".yaml", ".yml")
RELOAD_DEBOUNCE_SECONDS = 0.25
THRESHOLD_KEYS = tuple(c.value for c in Category) + ("overall",)
MERGED_POLICY_NAME = "merged-policy"

PolicySubscriber = Callable[[str, "Policy"], None]


class PolicyLoadError(Exception):
    """Raised when a policy document cannot be read or fails validation."""

    def __init__(self, path: Union[str, Path, None], reason: str):
        self.path = str(path) if path is not None else None
        self.reason = reason
        prefix = f"{self.path}: " if self.path else ""
        super().__init__(f"{prefix}{reason}")


@dataclass(frozen=True)
class Policy:
    """A validated, immutable rule bundle."""
    name: str
    version: str
    rules: Tuple[Rule, ...]
    thresholds: Dict[str, float]
    enforcement_mode: EnforcementMode = EnforcementMode.WARN
    enabled: bool = True
    description: str = ""
    auto_fix: bool = False
    notifications: bool = True
    audit_log: bool = True
    author: str = ""
    compliance: Tuple[str, ...] = ()
    tags: Tuple[str, ...] = ()
    source_path: Optional[str] = None

    def threshold(self, key: Union[str, Category]) -> float:
        key = key.value if isinstance(key, Category) else key
        return self.thresholds[key]

    def exceeded(self, metrics: RiskMetrics) -> List[Tuple[Category, float, float]]:
        """Categories whose risk is above this policy's threshold."""
        return [
            (category, metrics.get(category), self.threshold(category))
            for category in Category
            if metrics.get(category) > self.threshold(category)
        ]

    def catalogue(self) -> PatternCatalogue:
        return PatternCatalogue(self.rules)

    def enabled_rules(self) -> Tuple[Rule, ...]:
        return tuple(r for r in self.rules if r.enabled)

    def to_document(self) -> Dict:
        """Plain-data form matching the PolicyDocument schema."""
        return {
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "enabled": self.enabled,
            "rules": [r.to_dict() for r in self.rules],
            "thresholds": {k: self.thresholds[k] for k in THRESHOLD_KEYS},
            "enforcement": {
                "mode": self.enforcement_mode.value,
                "auto_fix": self.auto_fix,
                "notifications": self.notifications,
                "audit_log": self.audit_log,
            },
            "metadata": {
                "author": self.author,
                "compliance": list(self.compliance),
                "tags": list(self.tags),
            },
        }


@dataclass
class PolicyLoadResult:
    """Outcome of loading several policy documents."""
    policies: List[Policy] = field(default_factory=list)
    rejected: List[Tuple[str, str]] = field(default_factory=list)
    used_default: bool = False

    @property
    def ok(self) -> bool:
        return not self.rejected


# ============================================================================
# Reading and validation
# ============================================================================


def policy_from_document(document: PolicyDocument, source_path: Optional[str] = None) -> Policy:
    """Build a runtime Policy from a validated document."""
    source = f"policy:{document.name}"
    rules = tuple(build_rule(r, source=source) for r in document.rules)
    return Policy(
        name=document.name,
        version=document.version,
        rules=rules,
        thresholds=document.thresholds.model_dump(),
        enforcement_mode=document.enforcement.mode,
        enabled=document.enabled,
        description=document.description,
        auto_fix=document.enforcement.auto_fix,
        notifications=document.enforcement.notifications,
        audit_log=document.enforcement.audit_log,
        author=document.metadata.author,
        compliance=tuple(s.upper() for s in document.metadata.compliance),
        tags=tuple(document.metadata.tags),
        source_path=source_path,
    )


def parse_policy(data: object, source: Optional[Union[str, Path]] = None) -> Policy:
    """Validate already-parsed YAML data into a Policy."""
    if not isinstance(data, dict):
        raise PolicyLoadError(source, "policy document root must be a mapping")
    try:
        document = PolicyDocument.model_validate(data)
    except ValidationError as e:
        raise PolicyLoadError(source, f"invalid policy: {format_validation_error(e)}") from e
    try:
        return policy_from_document(document, str(source) if source else None)
    except PatternSyntaxError as e:
        raise PolicyLoadError(source, str(e)) from e


def read_policy(path: Union[str, Path]) -> Policy:
    """Read and validate one policy document from disk."""
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise PolicyLoadError(path, f"cannot read policy: {e.strerror or e}") from e
    except yaml.YAMLError as e:
        raise PolicyLoadError(path, f"malformed YAML: {e}") from e
    return parse_policy(data, path)


_DEFAULT_POLICY: Optional[Policy] = None


def create_default_policy() -> Policy:
    """The built-in enterprise-default policy."""
    global _DEFAULT_POLICY
    if _DEFAULT_POLICY is None:
        _DEFAULT_POLICY = read_policy(DEFAULT_POLICY_FILE)
    return _DEFAULT_POLICY


def export_policy(policy: Policy) -> str:
    """Serialize a policy back to YAML."""
    return yaml.safe_dump(policy.to_document(), sort_keys=False, default_flow_style=False)


# ============================================================================
# Merging
# ============================================================================


def stricter_mode(a: EnforcementMode, b: EnforcementMode) -> EnforcementMode:
    """Return the stricter of two enforcement modes (block > error > warn)."""
    return a if a >= b else b


def merge_policies(policies: Sequence[Policy]) -> Policy:
    """
    Merge policies into one.

    Rule union is keyed by id and the first occurrence wins, so callers that
    care about which duplicate survives must order their inputs. Thresholds
    take the elementwise minimum and the enforcement mode the strictest
    value; both are independent of input order.
    """
    policies = list(policies)
    if not policies:
        raise ValueError("merge_policies needs at least one policy")
    if len(policies) == 1:
        return policies[0]

    rules: List[Rule] = []
    seen = set()
    for policy in policies:
        for rule in policy.rules:
            if rule.id in seen:
                continue
            seen.add(rule.id)
            rules.append(rule)

    thresholds = {
        key: min(p.thresholds[key] for p in policies) for key in THRESHOLD_KEYS
    }

    mode = policies[0].enforcement_mode
    for policy in policies[1:]:
        mode = stricter_mode(mode, policy.enforcement_mode)

    names = sorted(p.name for p in policies)
    return Policy(
        name=MERGED_POLICY_NAME,
        version="1.0.0",
        rules=tuple(rules),
        thresholds=thresholds,
        enforcement_mode=mode,
        enabled=True,
        description=f"Merged from: {', '.join(names)}",
        auto_fix=all(p.auto_fix for p in policies),
        notifications=any(p.notifications for p in policies),
        audit_log=any(p.audit_log for p in policies),
        author="EthicsGate",
        compliance=tuple(sorted({s for p in policies for s in p.compliance})),
        tags=tuple(sorted({t for p in policies for t in p.tags})),
    )


# ============================================================================
# Store
# ============================================================================


class _PolicyReloadHandler(FileSystemEventHandler):
    """
    Reloads a policy whenever its YAML file is created, modified or moved
    into place.

    Editors often emit several events per save; events for the same path are
    coalesced and the reload runs once the path has been quiet for
    ``debounce_seconds``.
    """

    def __init__(self, store: "PolicyStore", debounce_seconds: float = RELOAD_DEBOUNCE_SECONDS):
        super().__init__()
        self._store = store
        self._debounce = debounce_seconds
        self._timers: Dict[Path, threading.Timer] = {}
        self._timers_lock = threading.Lock()

    def on_modified(self, event: FileSystemEvent) -> None:
        self._handle_event(event, event.src_path)

    def on_created(self, event: FileSystemEvent) -> None:
        self._handle_event(event, event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        self._handle_event(event, event.dest_path)

    def _handle_event(self, event: FileSystemEvent, raw_path) -> None:
        if event.is_directory:
            return
        path = Path(str(raw_path))
        if path.suffix.lower() not in POLICY_SUFFIXES:
            return
        with self._timers_lock:
            pending = self._timers.pop(path, None)
            if pending is not None:
                pending.cancel()
            timer = threading.Timer(self._debounce, self._fire, args=(path,))
            timer.daemon = True
            self._timers[path] = timer
            timer.start()

    def _fire(self, path: Path) -> None:
        with self._timers_lock:
            self._timers.pop(path, None)
        self._store.reload(path)

    def cancel_pending(self) -> None:
        with self._timers_lock:
            timers, self._timers = list(self._timers.values()), {}
        for timer in timers:
            timer.cancel()


class PolicyStore:
    """
    Owns the loaded policies and the active merged view.

    All mutation happens under one lock; readers always receive complete,
    immutable Policy objects.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._policies: Dict[str, Policy] = {}
        self._subscribers: List[PolicySubscriber] = []
        self._observer: Optional[Observer] = None
        self._handler: Optional[_PolicyReloadHandler] = None

    # -- loading --------------------------------------------------------

    def load_policy(self, path: Union[str, Path]) -> Policy:
        """Load one document and register it. Raises PolicyLoadError."""
        policy = read_policy(path)
        self._register(policy)
        return policy

    def load_policies(self, paths: Iterable[Union[str, Path]]) -> PolicyLoadResult:
        """Load several documents, rejecting failures individually."""
        paths = [Path(p) for p in paths]
        result = PolicyLoadResult()
        for path in paths:
            try:
                result.policies.append(self.load_policy(path))
            except PolicyLoadError as e:
                logger.warning(f"Rejected policy {path}: {e.reason}")
                result.rejected.append((str(path), e.reason))

        if len(paths) == 1 and result.rejected:
            default = create_default_policy()
            logger.warning(f"Falling back to built-in policy '{default.name}'")
            self._register(default)
            result.policies.append(default)
            result.used_default = True
        return result

    def load_directory(self, directory: Union[str, Path]) -> PolicyLoadResult:
        """Load every *.yaml / *.yml document in a directory."""
        directory = Path(directory)
        if not directory.is_dir():
            logger.warning(f"Policy directory not found: {directory}")
            return PolicyLoadResult()
        paths = sorted(
            p for p in directory.iterdir()
            if p.is_file() and p.suffix.lower() in POLICY_SUFFIXES
        )
        logger.debug(f"Loading {len(paths)} policy document(s) from {directory}")
        return self.load_policies(paths)

    def add(self, policy: Policy) -> None:
        """Register an in-memory policy."""
        self._register(policy)

    def _register(self, policy: Policy) -> None:
        with self._lock:
            existing = self._policies.get(policy.name)
            if existing is not None and existing.source_path != policy.source_path:
                logger.warning(
                    f"Policy '{policy.name}' from {policy.source_path} replaces "
                    f"the one from {existing.source_path}"
                )
            self._policies[policy.name] = policy

    # -- reading --------------------------------------------------------

    def get(self, name: str) -> Optional[Policy]:
        with self._lock:
            return self._policies.get(name)

    def all(self) -> List[Policy]:
        with self._lock:
            return list(self._policies.values())

    def names(self) -> List[str]:
        with self._lock:
            return list(self._policies)

    def active(self) -> Policy:
        """Merged view of every enabled policy, or the default if none."""
        with self._lock:
            enabled = [p for p in self._policies.values() if p.enabled]
        if not enabled:
            return create_default_policy()
        return merge_policies(enabled)

    # -- live reload ----------------------------------------------------

    def subscribe(self, callback: PolicySubscriber) -> Callable[[], None]:
        """Register for reload notifications. Returns an unsubscribe callable."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def reload(self, path: Union[str, Path]) -> Optional[Policy]:
        """
        Re-read one document. On success the new version replaces the old
        one and subscribers are notified; on failure the previous version
        stays active.
        """
        try:
            policy = read_policy(path)
        except PolicyLoadError as e:
            logger.warning(f"Reload of {path} rejected, keeping previous version: {e.reason}")
            return None

        self._register(policy)
        with self._lock:
            subscribers = list(self._subscribers)
        logger.info(f"Reloaded policy '{policy.name}' from {path}")
        for callback in subscribers:
            try:
                callback(policy.name, policy)
            except Exception:
                logger.exception(f"Policy subscriber failed for '{policy.name}'")
        return policy

    def watch(
        self,
        directory: Union[str, Path],
        debounce_seconds: float = RELOAD_DEBOUNCE_SECONDS,
    ) -> None:
        """Start watching a directory for policy changes."""
        directory = Path(directory)
        with self._lock:
            if self._observer is not None:
                raise RuntimeError("PolicyStore is already watching a directory")
            observer = Observer()
            observer.daemon = True
            handler = _PolicyReloadHandler(self, debounce_seconds)
            observer.schedule(handler, str(directory), recursive=False)
            observer.start()
            self._observer = observer
            self._handler = handler
        logger.info(f"Watching policy directory {directory}")

    def stop_watching(self) -> None:
        with self._lock:
            observer, self._observer = self._observer, None
            handler, self._handler = self._handler, None
        if handler is not None:
            handler.cancel_pending()
        if observer is not None:
            observer.stop()
            observer.join(timeout=2)

    @property
    def watching(self) -> bool:
        return self._observer is not None
