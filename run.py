import sys
import logging
import argparse

log = logging.getLogger('werkzeug')
log.disabled = True


def main() -> None:
    p = argparse.ArgumentParser(prog="linkgrove")
    p.add_argument("--host", default="0.0.0.0")
    p.add_argument("--port", type=int, default=8073)
    p.add_argument("--log-level", default="INFO")
    args = p.parse_args()

    from linkgrove import create_app

    cli = sys.modules.get('flask.cli')
    if cli is not None:
        cli.show_server_banner = lambda *x: None

    app = create_app()
    app.logger.setLevel(args.log_level.upper())
    print(f"LinkGrove starting on http://{args.host}:{args.port}", flush=True)
    app.run(host=args.host, port=args.port, debug=False)


if __name__ == "__main__":
    main()
