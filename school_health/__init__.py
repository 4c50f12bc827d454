"""School health metrics core.

Derives BMI, growth trends, percentiles and class aggregates from raw student
measurements, and keeps screen-level caches coherent across data changes.
"""
