"""Validation utilities for RepRap Sender.

This module provides validation functions for user intents and settings,
so that bad values are rejected before anything reaches the controller.
"""

import math
from typing import Optional
from urllib.parse import urlsplit

from .constants import JOG_AXES, MIN_LAYER_LOG, TEMPERATURE_MAX, TEMPERATURE_TARGETS
from .exceptions import InvalidParameterError, InvalidRangeError


def validate_feed_rate(feed: float) -> float:
    """Validate feed rate value.
    
    Args:
        feed: Feed rate in mm/min
        
    Returns:
        The validated feed rate
        
    Raises:
        InvalidParameterError: If feed rate is invalid
    """
    try:
        feed = float(feed)
    except (TypeError, ValueError):
        raise InvalidParameterError("feed_rate", feed, "must be numeric")
    
    if feed <= 0:
        raise InvalidParameterError("feed_rate", feed, "must be positive")
    
    return feed


def validate_axis(axis: str) -> str:
    """Validate a jog axis letter.
    
    Args:
        axis: Axis letter, case-insensitive ("X", "Y" or "Z")
        
    Returns:
        The upper-cased axis letter
        
    Raises:
        InvalidParameterError: If the axis is not jog-able
    """
    if not isinstance(axis, str):
        raise InvalidParameterError("axis", axis, "must be a string")
    letter = axis.strip().upper()
    if letter not in JOG_AXES:
        raise InvalidParameterError("axis", axis, f"must be one of {', '.join(JOG_AXES)}")
    return letter


def validate_distance(distance: float) -> float:
    """Validate a relative move distance (non-zero, numeric)."""
    try:
        distance = float(distance)
    except (TypeError, ValueError):
        raise InvalidParameterError("distance", distance, "must be numeric")
    if distance == 0:
        raise InvalidParameterError("distance", distance, "must be non-zero")
    return distance


def validate_temperature(target: str, value: float) -> tuple[str, float]:
    """Validate a heater target and its set point.
    
    Args:
        target: "bed" or "head"
        value: Temperature in degrees Celsius (0 switches the heater off)
        
    Returns:
        Tuple of (target, value)
        
    Raises:
        InvalidParameterError: If the target is unknown or value non-numeric
        InvalidRangeError: If value is outside [0, TEMPERATURE_MAX]
    """
    if target not in TEMPERATURE_TARGETS:
        raise InvalidParameterError(
            "target",
            target,
            f"must be one of {', '.join(TEMPERATURE_TARGETS)}",
        )
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise InvalidParameterError("temperature", value, "must be numeric")
    if not (0.0 <= value <= TEMPERATURE_MAX):
        raise InvalidRangeError(value, 0.0, TEMPERATURE_MAX)
    return target, value


def validate_interval_ms(interval: int, min_val: int = 0) -> int:
    """Validate a timer interval in milliseconds.
    
    Args:
        interval: Interval in milliseconds
        min_val: Minimum allowed value (default 0)
        
    Returns:
        The validated interval as int
        
    Raises:
        InvalidParameterError: If interval is invalid
    """
    try:
        interval = int(interval)
    except (TypeError, ValueError):
        raise InvalidParameterError("interval", interval, "must be integer")
    
    if interval < min_val:
        raise InvalidParameterError(
            "interval",
            interval,
            f"must be >= {min_val}"
        )
    
    return interval


def validate_layer_height(height: float) -> float:
    """Validate the configured layer height (mm, strictly positive)."""
    try:
        height = float(height)
    except (TypeError, ValueError):
        raise InvalidParameterError("layer_height", height, "must be numeric")
    if height <= 0:
        raise InvalidParameterError("layer_height", height, "must be positive")
    return height


def validate_layer_log_size(size: int) -> int:
    """Validate the layer log cap; two timestamps are the least that give a duration."""
    if isinstance(size, bool):
        raise InvalidParameterError("max_layer_log", size, "must be integer")
    try:
        size = int(size)
    except (TypeError, ValueError):
        raise InvalidParameterError("max_layer_log", size, "must be integer")
    if size < MIN_LAYER_LOG:
        raise InvalidParameterError("max_layer_log", size, f"must be >= {MIN_LAYER_LOG}")
    return size


def validate_host(host: str) -> str:
    """Validate controller host name or base URL.
    
    Accepts "192.168.1.20", "printer.local:8080" or "http://printer.local".
    
    Returns:
        Base URL with scheme and without trailing slash
        
    Raises:
        InvalidParameterError: If host is empty or unparsable
    """
    if not host or not isinstance(host, str):
        raise InvalidParameterError("host", host, "must be non-empty string")
    host = host.strip().rstrip("/")
    if not host:
        raise InvalidParameterError("host", host, "must be non-empty")
    if "://" not in host:
        host = f"http://{host}"
    parts = urlsplit(host)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise InvalidParameterError("host", host, "must be an http(s) host")
    return host


def validate_object_height(height: Optional[object]) -> Optional[float]:
    """Parse a user-supplied object height; None when not a positive number."""
    if height is None:
        return None
    try:
        value = float(height)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return value
