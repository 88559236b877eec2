"""
Event-driven cache invalidation across the named cache instances.

Writes to the directory (a business edited, a review posted, a profile
changed) are published as invalidation events. Rules map event types to
tags and key patterns, formatted from the event, and remove matching
entries from the affected cache domains.
"""

import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..logging_config import get_logger
from ..metrics_collector import MetricsCollector, get_metrics_collector
from .registry import CacheDomain, CacheRegistry

ALL_DOMAINS = [domain for domain in CacheDomain]


@dataclass
class InvalidationRule:
    """Cache invalidation rule configuration.

    ``tags`` and ``patterns`` are templates formatted with the event's
    ``resource_id`` and ``data`` fields, e.g. ``business:{resource_id}``.
    """
    name: str
    event_types: List[str]
    tags: List[str] = field(default_factory=list)
    patterns: List[str] = field(default_factory=list)
    domains: List[CacheDomain] = field(default_factory=lambda: list(ALL_DOMAINS))
    priority: int = 1  # 1 = highest
    enabled: bool = True

    triggered_count: int = 0
    keys_invalidated: int = 0
    error_count: int = 0
    last_triggered: Optional[datetime] = None

    def __post_init__(self):
        self.domains = [CacheDomain(domain) for domain in self.domains]

    def matches(self, event: 'InvalidationEvent') -> bool:
        return self.enabled and event.event_type in self.event_types


@dataclass
class InvalidationEvent:
    """A write that makes cached data stale."""
    event_type: str
    resource_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    source: str = "unknown"
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def template_fields(self) -> Dict[str, Any]:
        return {**self.data, 'resource_id': self.resource_id}


class CacheInvalidator:
    """Applies invalidation rules to a cache registry."""

    def __init__(self, registry: CacheRegistry, rules: Optional[Iterable[InvalidationRule]] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.registry = registry
        self.logger = get_logger(__name__, 'cache_invalidator')
        self.metrics = metrics or get_metrics_collector()

        self.rules: Dict[str, InvalidationRule] = {}
        self.event_handlers: Dict[str, List[Callable[[InvalidationEvent], None]]] = {}

        self.stats = {
            'rules_registered': 0,
            'events_processed': 0,
            'invalidations_executed': 0,
            'keys_invalidated': 0,
            'total_processing_time': 0.0
        }

        for rule in create_default_invalidation_rules() if rules is None else rules:
            self.register_rule(rule)

    def register_rule(self, rule: InvalidationRule) -> None:
        """Register a cache invalidation rule."""
        self.rules[rule.name] = rule
        self.stats['rules_registered'] += 1
        self.logger.debug(f"Registered cache invalidation rule: {rule.name}", operation="register_rule")

    def unregister_rule(self, rule_name: str) -> bool:
        if rule_name in self.rules:
            del self.rules[rule_name]
            return True
        return False

    def register_event_handler(self, event_type: str, handler: Callable[[InvalidationEvent], None]) -> None:
        """Register a callback run after the rules for ``event_type``."""
        self.event_handlers.setdefault(event_type, []).append(handler)

    def invalidate_key(self, domain, key: str) -> bool:
        removed = self.registry.get(domain).invalidate(key)
        self._record(1 if removed else 0, domain=CacheDomain(domain).value, kind='key')
        return removed

    def invalidate_by_tags(self, tags: Iterable[str], domains: Optional[Iterable] = None) -> int:
        """Remove entries carrying any of ``tags``; return how many were removed."""
        targets = [CacheDomain(domain) for domain in domains] if domains is not None else ALL_DOMAINS
        total = 0
        for domain in targets:
            cache = self.registry.get(domain)
            removed = sum(cache.invalidate_by_tag(tag) for tag in tags)
            if removed:
                self._record(removed, domain=domain.value, kind='tag')
            total += removed
        return total

    def invalidate_by_pattern(self, domain, pattern: str) -> int:
        removed = self.registry.get(domain).invalidate_by_pattern(pattern)
        if removed:
            self._record(removed, domain=CacheDomain(domain).value, kind='pattern')
        return removed

    def process_event(self, event: InvalidationEvent) -> int:
        """Apply every matching rule to ``event``; return entries removed."""
        start_time = time.perf_counter()
        applicable_rules = sorted(
            (rule for rule in self.rules.values() if rule.matches(event)),
            key=lambda r: r.priority
        )

        total = 0
        for rule in applicable_rules:
            total += self._execute_rule(rule, event)

        for handler in self.event_handlers.get(event.event_type, []):
            try:
                handler(event)
            except Exception as e:
                self.logger.error(f"Error in invalidation event handler: {e}",
                                  operation="process_event", event_type=event.event_type)

        self.stats['events_processed'] += 1
        self.stats['total_processing_time'] += time.perf_counter() - start_time

        if applicable_rules:
            self.logger.info(
                f"Processed invalidation event {event.event_type}: {total} entries removed",
                operation="process_event", resource_id=event.resource_id, source=event.source
            )
        else:
            self.logger.debug(f"No applicable rules for event: {event.event_type}", operation="process_event")
        return total

    def _execute_rule(self, rule: InvalidationRule, event: InvalidationEvent) -> int:
        rule.triggered_count += 1
        rule.last_triggered = datetime.now(timezone.utc)
        fields = event.template_fields()

        try:
            tags = [tag.format(**fields) for tag in rule.tags]
            patterns = [pattern.format(**{k: re.escape(str(v)) for k, v in fields.items()})
                        for pattern in rule.patterns]
        except (KeyError, IndexError) as e:
            rule.error_count += 1
            self.logger.error(f"Invalidation rule {rule.name} cannot format templates: {e}",
                              operation="execute_rule", event_type=event.event_type)
            return 0

        removed = self.invalidate_by_tags(tags, rule.domains) if tags else 0
        for domain in rule.domains:
            for pattern in patterns:
                removed += self.invalidate_by_pattern(domain, pattern)

        rule.keys_invalidated += removed
        return removed

    def _record(self, removed: int, **labels) -> None:
        self.stats['invalidations_executed'] += 1
        self.stats['keys_invalidated'] += removed
        try:
            counter = self.metrics.get_counter('cache_invalidations_total', 'Cache entries invalidated')
            counter.increment(removed, **labels)
        except Exception as e:  # noqa: BLE001
            self.logger.debug(f"Metrics update failed: {e}", operation="metrics")

    def get_stats(self) -> Dict[str, Any]:
        """Get cache invalidation statistics."""
        rule_stats = {}
        for name, rule in self.rules.items():
            rule_stats[name] = {
                'event_types': rule.event_types,
                'domains': [domain.value for domain in rule.domains],
                'enabled': rule.enabled,
                'triggered_count': rule.triggered_count,
                'keys_invalidated': rule.keys_invalidated,
                'error_count': rule.error_count,
                'last_triggered': rule.last_triggered.isoformat() if rule.last_triggered else None
            }

        return {
            'overall': dict(self.stats),
            'rules': rule_stats,
        }


def create_default_invalidation_rules() -> List[InvalidationRule]:
    """Create default cache invalidation rules."""
    return [
        InvalidationRule(
            name="business_write",
            event_types=["business.created", "business.updated", "business.deleted"],
            tags=["businesses", "business:{resource_id}", "search", "api"],
            domains=[CacheDomain.BUSINESS, CacheDomain.SEARCH, CacheDomain.AI, CacheDomain.GENERAL],
            priority=1
        ),
        InvalidationRule(
            name="review_write",
            event_types=["review.created", "review.updated", "review.deleted"],
            tags=["business:{resource_id}", "reviews"],
            priority=2
        ),
        InvalidationRule(
            name="profile_update",
            event_types=["profile.updated", "saved_business.changed"],
            tags=["user:{resource_id}"],
            patterns=["^user-{resource_id}-"],
            domains=[CacheDomain.GENERAL, CacheDomain.AI],
            priority=2
        ),
    ]
