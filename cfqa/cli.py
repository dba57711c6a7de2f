import argparse
import copy
from datetime import datetime, timezone
import json
import logging
import subprocess
import sys
import time
try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:  # pragma: no cover - runtime compatibility path
    import tomli as tomllib

from . import settings as s


LOGGER = logging.getLogger("cfqa")


def _setup_logging(level: str = "INFO", log_file: str | None = None) -> None:
    lvl = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=lvl,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)] + ([logging.FileHandler(log_file)] if log_file else []),
        force=True,
    )


def _git_revision() -> str:
    try:
        out = subprocess.run(["git", "rev-parse", "HEAD"], check=True, capture_output=True, text=True)
        return out.stdout.strip()
    except (OSError, subprocess.CalledProcessError):
        return "unknown"


def _write_metadata(path: str, payload: dict) -> None:
    from .root_io import ensure_parent, expand

    out = expand(path)
    ensure_parent(out)
    with open(out, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, sort_keys=True)


def default_config(task: str | None = None) -> dict:
    return s.default_config_template(task)


def _enable_mt(run_cfg: dict) -> None:
    if not bool(run_cfg.get("enable_mt", False)):
        return
    import ROOT

    nthreads = int(run_cfg.get("nthreads", 0))
    if nthreads > 0:
        ROOT.EnableImplicitMT(nthreads)
    else:
        ROOT.EnableImplicitMT()


def run(cfg: dict) -> None:
    run_cfg = cfg.get("run", {})
    path_cfg = cfg.get("paths", {})
    _setup_logging(str(run_cfg.get("log_level", "INFO")), str(path_cfg.get("log_file", "") or ""))
    runtime_cfg = s.current_runtime_config(cfg)
    task = runtime_cfg.task
    LOGGER.info("Starting run task=%s input=%s", task, path_cfg.get("input"))
    _enable_mt(run_cfg)

    t0 = time.time()
    if task == "cffilter_qa":
        from .tasks_cffilter import analyse_cffilter_qa

        analyse_cffilter_qa(
            runtime_cfg.paths["input"],
            runtime_cfg.paths["output"],
            runtime_cfg.paths["femto_output"],
            runtime_cfg,
        )
    elif task == "ft0_qa":
        from .tasks_ft0 import analyse_ft0_qa

        analyse_ft0_qa(runtime_cfg.paths["input"], runtime_cfg.paths["output"], runtime_cfg)
    else:
        raise ValueError(f"Unsupported task: {task}")
    LOGGER.info("Finished run task=%s elapsed_sec=%.2f", task, time.time() - t0)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="PyROOT CLI for the femtoscopy filter QA and FT0 QA tasks")
    parser.add_argument("--config", help="Path to TOML config")
    parser.add_argument("--task", help="Task whose defaults are used (cffilter_qa or ft0_qa)")
    parser.add_argument("--dump-default-config", action="store_true", help="Print default config and exit")
    args = parser.parse_args(argv)

    if args.dump_default_config:
        print(default_config(args.task))
        return 0
    if not args.config:
        parser.error("--config is required")

    with open(args.config, "rb") as f:
        cfg = tomllib.load(f)
    if args.task:
        cfg.setdefault("run", {})["task"] = args.task

    merged = s.merge_config(cfg)

    started = datetime.now(timezone.utc)
    status = "success"
    error = ""
    try:
        run(merged)
    except Exception as exc:
        status = "failed"
        error = str(exc)
        raise
    finally:
        ended = datetime.now(timezone.utc)
        metadata = {
            "status": status,
            "error": error,
            "started_utc": started.isoformat(),
            "ended_utc": ended.isoformat(),
            "duration_sec": (ended - started).total_seconds(),
            "git_revision": _git_revision(),
            "config": copy.deepcopy(merged),
        }
        try:
            _write_metadata(merged.get("paths", {}).get("metadata_output", "run_metadata.json"), metadata)
        except OSError as meta_exc:
            LOGGER.error("Failed to write metadata: %s", meta_exc)
    return 0


if __name__ == "__main__":
    sys.exit(main())
