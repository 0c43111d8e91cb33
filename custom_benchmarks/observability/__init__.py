"""Request benchmarking helpers.

One summary line per request: elapsed time, a throughput estimate and the
fragments contributed by registered callbacks (cache stats, query time, ...).
Counters are process-local and reset every time they are reported.
"""
