import signal
import sys
import time
from argparse import SUPPRESS, ArgumentParser

from pgcontainer import options
from pgcontainer.postgres import run
from pgcontainer.tls import create_ssl_certs
from pgcontainer.utils.config_loader import load_container_config
from pgcontainer.utils.logger import setup_logger_from_config


def build_parser() -> ArgumentParser:
    config_help = "Path to a pgcontainer YAML config; defaults to configs/pgcontainer.yml"
    parser = ArgumentParser(
        prog="pgcontainer", description="Ephemeral PostgreSQL containers for integration tests", allow_abbrev=False
    )
    parser.add_argument("--config", default=None, help=config_help)
    # Accepted after the subcommand too; SUPPRESS keeps a value given before it
    common = ArgumentParser(add_help=False, allow_abbrev=False)
    common.add_argument("--config", default=SUPPRESS, help=config_help)
    sub = parser.add_subparsers(dest="command", required=True)

    run_p = sub.add_parser(
        "run", parents=[common], allow_abbrev=False,
        help="Start a container, print its connection string and wait until interrupted",
    )
    run_p.add_argument("--image", default=None)
    run_p.add_argument("--database", default=None)
    run_p.add_argument("--username", default=None)
    run_p.add_argument("--password", default=None)
    run_p.add_argument("--config-file", default=None, help="postgresql.conf to start the server with")
    run_p.add_argument("--init-script", action="append", default=[], help="May be given more than once")
    run_p.add_argument("--ordered", action="store_true", help="Run init scripts in the given order")
    run_p.add_argument("--ssl-ca", default=None)
    run_p.add_argument("--ssl-cert", default=None)
    run_p.add_argument("--ssl-key", default=None)
    run_p.add_argument("--sql-driver", default=None)
    run_p.add_argument("--conn-arg", action="append", default=[], metavar="KEY=VALUE",
                       help="Extra connection string argument, e.g. sslmode=disable")

    certs_p = sub.add_parser(
        "certs", parents=[common], allow_abbrev=False,
        help="Write a CA and a server certificate for SSL containers",
    )
    certs_p.add_argument("--dir", required=True)
    certs_p.add_argument("--host", default="localhost")
    return parser


def build_options(args):
    """Translate parsed `run` arguments into pgcontainer.options callables."""
    opts = []
    if args.database:
        opts.append(options.with_database(args.database))
    if args.username:
        opts.append(options.with_username(args.username))
    if args.password:
        opts.append(options.with_password(args.password))
    if args.config_file:
        opts.append(options.with_config_file(args.config_file))
    if args.init_script:
        if args.ordered:
            opts.append(options.with_ordered_init_scripts(*args.init_script))
        else:
            opts.append(options.with_init_scripts(*args.init_script))
    ssl = [args.ssl_ca, args.ssl_cert, args.ssl_key]
    if any(ssl):
        if not all(ssl):
            raise ValueError("--ssl-ca, --ssl-cert and --ssl-key must be given together")
        opts.append(options.with_ssl_cert(*ssl))
    if args.sql_driver:
        opts.append(options.with_sql_driver(args.sql_driver))
    for conn_arg in args.conn_arg:
        if "=" not in conn_arg:
            raise ValueError(f"--conn-arg expects KEY=VALUE, got {conn_arg!r}")
    return opts


def _raise_interrupt(signum, frame):
    raise KeyboardInterrupt


def _run(args, logger) -> int:
    container = run(args.image, *build_options(args), config_path=args.config)
    try:
        print(container.connection_string(*args.conn_arg), flush=True)
        logger.info("Container running, press Ctrl+C to stop")
        signal.signal(signal.SIGTERM, _raise_interrupt)
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        container.stop()
    return 0


def _certs(args, logger) -> int:
    ca, server = create_ssl_certs(args.dir, host=args.host)
    logger.info(f"Generated TLS material for {args.host} in {args.dir}")
    print(f"ca_cert={ca.cert_path}")
    print(f"server_cert={server.cert_path}")
    print(f"server_key={server.key_path}")
    return 0


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    config = load_container_config(args.config)
    logger = setup_logger_from_config(config)

    try:
        if args.command == "run":
            return _run(args, logger)
        return _certs(args, logger)
    except (ValueError, FileNotFoundError) as e:
        logger.error(str(e))
        return 2


if __name__ == "__main__":
    # Standard Python entrypoint pattern to avoid side effects when imported
    sys.exit(main())
