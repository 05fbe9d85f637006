__all__ = []

# Web service logging is configured on import so uvicorn workers pick it up
try:
    from shared.logging import setup_logging
    from web.app.config import get_config

    _cfg = get_config()
    setup_logging(service_name="web", log_dir=_cfg.log_dir, level=_cfg.log_level)
except Exception as e:  # noqa: BLE001
    import sys

    print(f"schedule web: logging setup failed: {e}", file=sys.stderr)
