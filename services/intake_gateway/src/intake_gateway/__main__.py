"""Dev entry point: python -m intake_gateway."""
from intake_gateway.config import GatewayConfig
from intake_gateway.wiring import build_app


def main() -> None:
    config = GatewayConfig()
    app = build_app(config)
    app.run(host=config.host, port=config.port)


if __name__ == "__main__":
    main()
