from .cli_runner import main, run_call, run_example

__all__ = ["main", "run_call", "run_example"]
