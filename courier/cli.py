"""CLI entry point for the courier payment and order services."""

import argparse
import logging

from courier.config.loader import (
    get_config_value,
    load_config,
    save_config,
    set_config_value,
    snapshot_config,
)
from courier.config.schema import CourierConfig
from courier.gateway.order_store_client import OrderStoreClient
from courier.gateway.processor_client import ProcessorClient, ProcessorError
from courier.payments.orchestrator import (
    REFUND_REASONS,
    PaymentIntentOrchestrator,
    PaymentNotFoundError,
)
from courier.payments.propagation import StatusPropagationRetrier
from courier.storage import payment_repo
from courier.storage.database import open_database

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = "ops/configs/default.yaml"


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="courier",
        description="Order lifecycle and payment reconciliation services",
    )
    parser.add_argument(
        "--config", default=DEFAULT_CONFIG, help="Config YAML path"
    )
    parser.add_argument("--db", default=None, help="SQLite DB path (overrides config)")

    sub = parser.add_subparsers(dest="command")

    # serve
    serve_p = sub.add_parser("serve", help="Run the payment service API")
    serve_p.add_argument("--host", default="0.0.0.0")
    serve_p.add_argument("--port", type=int, default=9000)

    # attempts / unpropagated
    attempts_p = sub.add_parser("attempts", help="Show payment attempts for an order")
    attempts_p.add_argument("order_id")
    sub.add_parser(
        "unpropagated", help="List paid orders the order service never acknowledged"
    )

    # refund
    refund_p = sub.add_parser("refund", help="Refund a payment")
    refund_p.add_argument("payment_intent_id")
    refund_p.add_argument(
        "--amount", type=int, default=None, help="Partial amount in minor units"
    )
    refund_p.add_argument("--reason", choices=sorted(REFUND_REASONS), default=None)

    # config show / config set
    config_p = sub.add_parser("config", help="Config operations")
    config_sub = config_p.add_subparsers(dest="config_command")
    config_sub.add_parser("show", help="Display current config")
    set_p = config_sub.add_parser("set", help="Set a config value")
    set_p.add_argument("keyvalue", help="key=value to set")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = load_config(args.config)
    if args.db:
        config = set_config_value(config, "storage.db_path", args.db)

    if args.command == "serve":
        return _cmd_serve(config, args)
    elif args.command == "attempts":
        return _cmd_attempts(config, args)
    elif args.command == "unpropagated":
        return _cmd_unpropagated(config)
    elif args.command == "refund":
        return _cmd_refund(config, args)
    elif args.command == "config":
        return _cmd_config(config, args)
    else:
        parser.print_help()
        return 1


def build_orchestrator(config: CourierConfig) -> PaymentIntentOrchestrator:
    """Wire the orchestrator and its collaborators from config."""
    conn = open_database(config.storage.db_path, check_same_thread=False)
    snapshot_config(config, conn)
    order_store = OrderStoreClient(
        base_url=config.order_store.base_url,
        token=config.order_store.token or None,
        timeout=config.order_store.timeout_seconds,
    )
    processor = ProcessorClient(
        base_url=config.processor.base_url,
        timeout=config.processor.timeout_seconds,
    )
    retrier = StatusPropagationRetrier(order_store, config.propagation)
    return PaymentIntentOrchestrator(
        conn,
        processor,
        retrier,
        config.payments,
        default_currency=config.processor.currency,
    )


def _cmd_serve(config: CourierConfig, args) -> int:
    import uvicorn

    from courier.payments.api import create_app

    try:
        orchestrator = build_orchestrator(config)
    except ProcessorError as e:
        print(f"Error: {e}")
        return 1
    app = create_app(orchestrator)
    try:
        uvicorn.run(app, host=args.host, port=args.port)
    finally:
        # Let late charges and propagations record their outcomes
        if not orchestrator.drain(timeout=config.payments.response_budget_seconds):
            logger.warning("Shutting down with payment work still in flight")
        orchestrator.close(wait_for_charges=False)
    return 0


def _cmd_attempts(config: CourierConfig, args) -> int:
    conn = open_database(config.storage.db_path)
    attempts = payment_repo.get_attempts_for_order(conn, args.order_id)
    conn.close()
    if not attempts:
        print(f"No payment attempts for order {args.order_id}")
        return 1
    for a in attempts:
        print(
            f"  #{a.attempt_number} {a.status:<9} {a.amount} {a.currency} "
            f"intent={a.payment_intent_id or '-'} propagation={a.propagation_status}"
            + (f" error={a.error_message}" if a.error_message else "")
        )
    return 0


def _cmd_unpropagated(config: CourierConfig) -> int:
    conn = open_database(config.storage.db_path)
    attempts = payment_repo.list_unpropagated(conn)
    conn.close()
    print(f"Unpropagated payments: {len(attempts)}")
    for a in attempts:
        print(
            f"  order={a.order_id} intent={a.payment_intent_id} "
            f"propagation={a.propagation_status} updated={a.updated_at}"
        )
    return 0


def _cmd_refund(config: CourierConfig, args) -> int:
    try:
        orchestrator = build_orchestrator(config)
    except ProcessorError as e:
        print(f"Error: {e}")
        return 1
    try:
        refund = orchestrator.refund(args.payment_intent_id, args.amount, args.reason)
    except (PaymentNotFoundError, ProcessorError, ValueError) as e:
        print(f"Refund failed: {e}")
        return 1
    finally:
        orchestrator.close()
    print(f"Refunded {refund.amount} {refund.currency} ({refund.refund_id}, {refund.status})")
    return 0


def _cmd_config(config: CourierConfig, args) -> int:
    if args.config_command == "show":
        print(config.model_dump_json(indent=2))
        return 0
    elif args.config_command == "set":
        kv = args.keyvalue
        if "=" not in kv:
            print("Error: use key=value format")
            return 1
        key, value = kv.split("=", 1)
        try:
            new_config = set_config_value(config, key.strip(), value.strip())
        except (KeyError, ValueError) as e:
            print(f"Error: {e}")
            return 1
        save_config(new_config, args.config)
        print(f"Set {key} = {get_config_value(new_config, key.strip())}")
        return 0
    else:
        print("Use: config show | config set key=value")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
