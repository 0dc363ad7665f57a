import argparse
import logging

from .common.config_loader import load_settings
from .engine.types import RAGEngineError
from .services.ask import ask, build_engine


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Beleidsbank CLI: ask questions about Dutch legislation")
    parser.add_argument("--question", "-q", default="", help="Ask one question and exit")
    parser.add_argument("--show-sources", action="store_true", help="Print the cited passages after each answer")
    parser.add_argument("--log-level", default="WARNING", help="Logging level (DEBUG, INFO, WARNING)")
    return parser.parse_args()


def _print_answer(result, *, show_sources: bool) -> None:
    print("\nANTWOORD:")
    print(result.answer)
    if show_sources and result.sources:
        print("\nBRONNEN:")
        for src in result.sources:
            print(f"  [{src['n']}] {src['title']} {src['link']}".rstrip())


def run():
    args = parse_args()
    logging.basicConfig(level=getattr(logging, str(args.log_level).upper(), logging.WARNING))

    settings = load_settings()
    try:
        engine = build_engine(settings=settings)
    except RAGEngineError as err:
        raise SystemExit(f"Failed to initialize Beleidsbank engine: {err}")

    if args.question:
        try:
            _print_answer(ask(question=args.question, engine=engine), show_sources=args.show_sources)
        except (RAGEngineError, ValueError) as err:
            raise SystemExit(f"Unable to answer the question: {err}")
        return

    print("Beleidsbank ready. Type 'quit' to exit.")

    while True:
        question = input("\nStel een vraag: ")
        if question.strip().lower() in {"quit", "exit", "stop"}:
            print("Tot ziens!")
            break
        if not question.strip():
            continue

        try:
            result = ask(question=question, engine=engine)
        except RAGEngineError as err:
            print(f"Unable to answer the question: {err}")
            continue

        _print_answer(result, show_sources=args.show_sources)


if __name__ == "__main__":
    run()
