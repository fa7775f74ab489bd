"""Gate checks, grouped by concern; `registry.build_registry()` fixes their order and stages."""
