from hypothesis import HealthCheck, settings

# Cold-start input generation can exceed Hypothesis's too_slow threshold on the
# first test of a fresh run; this is harness timing, not a test outcome.
settings.register_profile("default", suppress_health_check=[HealthCheck.too_slow])
settings.load_profile("default")
