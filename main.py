import uvicorn
from loguru import logger

from dialect_bridge.config import get_settings
from dialect_bridge.logging_config import setup_logging
from dialect_bridge.main import create_app


def main():
    settings = get_settings()
    setup_logging(settings.effective_log_level, settings.log_file)

    app = create_app(settings)
    catalog = app.state.context.catalog

    # Report which backends can serve requests before accepting traffic
    if catalog.has_language_model_api():
        cards = catalog.model_cards()
        logger.info("Serving models: {}", ", ".join(card["id"] for card in cards) or "(any upstream model)")
    else:
        logger.warning("No language model backend available; dialect endpoints will return 503")

    if not settings.token:
        logger.warning("BRIDGE_TOKEN is not set; every authenticated request will be rejected")

    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
