"""Security-risk analytics over the cached device population.

Everything here is a pure function of the device list and a clock; an
``Analysis`` is rebuilt from scratch on every call.

Risk buckets
    Android: patch level age in whole 30-day months, >=12 High, >=6 Medium,
    else Low. iOS: major version <=15 High, <=17 Medium, else Low. Missing or
    unparsable values are High.

Supported versions (distribution and compliance)
    Android: patch level less than 180 days old. iOS: major version >= 15.
"""

import re
from collections import Counter
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .device_service import PATCH_DATE_FORMAT, DeviceService, parse_patch_level
from .models import Device, Platform, utc_now

_IOS_MAJOR = re.compile(r"[0-9]+")
SUPPORTED_PATCH_AGE = timedelta(days=180)
MIN_SUPPORTED_IOS_MAJOR = 15


class RiskLevel(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


RISK_DESCRIPTIONS = {
    RiskLevel.HIGH: "High risk devices requiring immediate attention",
    RiskLevel.MEDIUM: "Medium risk devices requiring monitoring",
    RiskLevel.LOW: "Low risk devices meeting security requirements",
}


class SecurityStats(BaseModel):
    risk_level: RiskLevel
    count: int = 0
    description: str = ""
    affected_devices: List[str] = Field(default_factory=list)


class ComplianceMetrics(BaseModel):
    compliant_devices: int = 0
    non_compliant_devices: int = 0
    compliance_rate: float = 0.0
    average_delay: float = 0.0  # average days since the patch was released


class UpdatePattern(BaseModel):
    update_timespan: int = 0  # months
    oldest_patch: str = ""
    newest_patch: str = ""
    update_frequency: float = 0.0  # average months between updates
    update_gaps: List[str] = Field(default_factory=list)  # YYYY-MM with no observation
    compliance_metrics: ComplianceMetrics = Field(default_factory=ComplianceMetrics)


class VersionDistribution(BaseModel):
    version: str
    count: int
    percentage: float
    is_supported: bool


class PlatformSecurityStats(BaseModel):
    android: Dict[RiskLevel, SecurityStats]
    ios: Dict[RiskLevel, SecurityStats]


class PlatformUpdatePatterns(BaseModel):
    android: Optional[UpdatePattern] = None
    ios: Optional[UpdatePattern] = None


class PlatformVersionDistribution(BaseModel):
    android: List[VersionDistribution] = Field(default_factory=list)
    ios: List[VersionDistribution] = Field(default_factory=list)


class Analysis(BaseModel):
    security_stats: PlatformSecurityStats
    update_patterns: PlatformUpdatePatterns = Field(default_factory=PlatformUpdatePatterns)
    version_distribution: PlatformVersionDistribution = Field(default_factory=PlatformVersionDistribution)
    timestamp: datetime


def _parse_patch(patch: str, now: datetime) -> Optional[datetime]:
    return parse_patch_level(patch, now.tzinfo)


def _months_between(start: datetime, end: datetime) -> int:
    return int((end - start).total_seconds() / 3600 / 24 / 30)


def _ios_major(version: str) -> Optional[int]:
    major = version.split(".")[0]
    if not _IOS_MAJOR.fullmatch(major):
        return None
    return int(major)


def init_security_stats() -> Dict[RiskLevel, SecurityStats]:
    return {level: SecurityStats(risk_level=level, description=RISK_DESCRIPTIONS[level]) for level in RiskLevel}


def analyze_android_risk(patch_level: str, now: Optional[datetime] = None) -> RiskLevel:
    now = now or utc_now()
    if not patch_level:
        return RiskLevel.HIGH
    patch_date = _parse_patch(patch_level, now)
    if patch_date is None:
        return RiskLevel.HIGH

    months_old = _months_between(patch_date, now)
    if months_old >= 12:
        return RiskLevel.HIGH
    if months_old >= 6:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def analyze_ios_risk(version: str) -> RiskLevel:
    if not version:
        return RiskLevel.HIGH
    major = _ios_major(version)
    if major is None:
        return RiskLevel.HIGH
    if major <= 15:
        return RiskLevel.HIGH
    if major <= 17:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def is_android_patch_supported(patch_level: str, now: datetime) -> bool:
    patch_date = _parse_patch(patch_level, now)
    return patch_date is not None and now - patch_date < SUPPORTED_PATCH_AGE


def is_ios_version_supported(version: str) -> bool:
    return (_ios_major(version) or 0) >= MIN_SUPPORTED_IOS_MAJOR


def _month_key(dt: datetime) -> str:
    return f"{dt.year:04d}-{dt.month:02d}"


def _months_strictly_between(oldest: datetime, newest: datetime) -> List[str]:
    keys = []
    year, month = oldest.year, oldest.month
    while True:
        month += 1
        if month > 12:
            year, month = year + 1, 1
        if (year, month) >= (newest.year, newest.month):
            return keys
        keys.append(f"{year:04d}-{month:02d}")


def analyze_android_update_patterns(patches: Dict[str, int], now: Optional[datetime] = None) -> Optional[UpdatePattern]:
    """Timeline over the distinct patch levels seen (``patches`` maps level -> device count)."""
    now = now or utc_now()
    parsed = {}
    for patch in patches:
        date = _parse_patch(patch, now)
        if date is not None:
            parsed[patch] = date
    if not parsed:
        return None

    dates = sorted(parsed.values())
    oldest, newest = dates[0], dates[-1]
    timespan = _months_between(oldest, newest)

    pattern = UpdatePattern(
        update_timespan=timespan,
        oldest_patch=oldest.strftime(PATCH_DATE_FORMAT),
        newest_patch=newest.strftime(PATCH_DATE_FORMAT),
    )
    if len(dates) > 1:
        pattern.update_frequency = timespan / (len(dates) - 1)

    observed = {_month_key(d) for d in dates}
    pattern.update_gaps = [key for key in _months_strictly_between(oldest, newest) if key not in observed]

    compliant = sum(count for patch, count in patches.items() if is_android_patch_supported(patch, now))
    aged = sum(count for patch, count in patches.items() if patch in parsed)
    age_days = sum((now - parsed[patch]).total_seconds() / 86400 * count for patch, count in patches.items() if patch in parsed)
    pattern.compliance_metrics = _compliance(compliant, sum(patches.values()), age_days / aged if aged else 0.0)
    return pattern


def analyze_ios_update_patterns(versions: Dict[str, int]) -> Optional[UpdatePattern]:
    majors = sorted(m for m in (_ios_major(v) for v in versions) if m is not None)
    if not majors:
        return None

    pattern = UpdatePattern(
        update_timespan=(majors[-1] - majors[0]) * 12,  # approximate
        oldest_patch=f"iOS {majors[0]}",
        newest_patch=f"iOS {majors[-1]}",
    )
    if len(majors) > 1:
        pattern.update_frequency = pattern.update_timespan / (len(majors) - 1)

    compliant = sum(count for version, count in versions.items() if is_ios_version_supported(version))
    pattern.compliance_metrics = _compliance(compliant, sum(versions.values()), 0.0)
    return pattern


def _compliance(compliant: int, total: int, average_delay: float) -> ComplianceMetrics:
    return ComplianceMetrics(
        compliant_devices=compliant,
        non_compliant_devices=total - compliant,
        compliance_rate=compliant / total * 100 if total else 0.0,
        average_delay=average_delay,
    )


def analyze_android_version_distribution(patches: Dict[str, int], now: Optional[datetime] = None) -> List[VersionDistribution]:
    now = now or utc_now()
    total = sum(patches.values())
    distribution = [
        VersionDistribution(
            version=patch,
            count=count,
            percentage=count / total * 100,
            is_supported=is_android_patch_supported(patch, now),
        )
        for patch, count in patches.items()
    ]
    distribution.sort(key=lambda d: d.version, reverse=True)
    return distribution


def analyze_ios_version_distribution(versions: Dict[str, int]) -> List[VersionDistribution]:
    total = sum(versions.values())
    distribution = [
        VersionDistribution(
            version=version,
            count=count,
            percentage=count / total * 100,
            is_supported=is_ios_version_supported(version),
        )
        for version, count in versions.items()
    ]
    distribution.sort(key=lambda d: (_ios_major(d.version) or 0, d.version), reverse=True)
    return distribution


def device_label(device: Device) -> str:
    return f"{device.guid[:8]} ({device.platform})"


def analyze(devices: List[Device], now: Optional[datetime] = None) -> Analysis:
    """Build the full analysis for ``devices`` as of ``now``."""
    now = now or utc_now()
    analysis = Analysis(
        security_stats=PlatformSecurityStats(android=init_security_stats(), ios=init_security_stats()),
        timestamp=now,
    )

    android_patches: Counter = Counter()
    ios_versions: Counter = Counter()

    for d in devices:
        if d.platform == Platform.ANDROID.value:
            patch = d.software.security_patch_level
            if patch:
                android_patches[patch] += 1
                stats = analysis.security_stats.android[analyze_android_risk(patch, now)]
                stats.count += 1
                stats.affected_devices.append(device_label(d))
        elif d.platform == Platform.IOS.value:
            version = d.software.os_version
            if version:
                ios_versions[version] += 1
                stats = analysis.security_stats.ios[analyze_ios_risk(version)]
                stats.count += 1
                stats.affected_devices.append(device_label(d))

    if android_patches:
        analysis.update_patterns.android = analyze_android_update_patterns(android_patches, now)
    if ios_versions:
        analysis.update_patterns.ios = analyze_ios_update_patterns(ios_versions)

    analysis.version_distribution.android = analyze_android_version_distribution(android_patches, now)
    analysis.version_distribution.ios = analyze_ios_version_distribution(ios_versions)
    return analysis


class Analyzer:
    """Reads the cache through the device service; never writes."""

    def __init__(self, service: DeviceService):
        self.service = service

    def analyze_devices(self, now: Optional[datetime] = None) -> Analysis:
        return analyze(self.service.list_devices(), now)
