from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from pydantic import BaseModel, Field

from question_engine.adapters.snapshot import load_catalog_snapshot
from question_engine.config import EngineConfig, load_engine_config
from question_engine.simulation import NoiseRates, SimulationResult, run_batch, summarize


class SimulationSessionArtifact(BaseModel):
    """Per-target outcome persisted for offline comparison of config variants."""

    target_id: str
    session_id: str
    outcome: str
    reason: str
    questions_asked: int
    reveal_misses: int
    invariant_failures: list[str] = Field(default_factory=list)


class SimulationBatch(BaseModel):
    snapshot: str
    seed: int
    noise: NoiseRates
    sessions: list[SimulationSessionArtifact] = Field(default_factory=list)
    summary: dict[str, float] = Field(default_factory=dict)


def _artifact(result: SimulationResult) -> SimulationSessionArtifact:
    return SimulationSessionArtifact(
        target_id=result.target_id,
        session_id=result.session_id,
        outcome=result.outcome.value,
        reason=result.reason,
        questions_asked=result.questions_asked,
        reveal_misses=result.reveal_misses,
        invariant_failures=result.invariant_failures,
    )


def write_simulation_batch(*, output_path: str | Path, batch: SimulationBatch) -> Path:
    out = Path(output_path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(json.dumps(batch.model_dump(mode="json"), indent=2) + "\n", encoding="utf-8")
    return out


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Simulate sessions against ground-truth targets from a catalog snapshot.")
    parser.add_argument("--snapshot", required=True, help="Path to a catalog snapshot JSON file.")
    parser.add_argument("--config", default=None, help="Optional engine config JSON file.")
    parser.add_argument("--output", default=None, help="Optional path for the JSON batch artifact.")
    parser.add_argument(
        "--target",
        action="append",
        default=[],
        metavar="CANDIDATE_ID",
        help="Target candidate. Repeat for multiple; defaults to every candidate.",
    )
    parser.add_argument("--limit", type=int, default=None, help="Simulate at most this many targets.")
    parser.add_argument("--seed", type=int, default=0)
    parser.add_argument("--noise-explore", type=float, default=0.0)
    parser.add_argument("--noise-soft", type=float, default=0.0)
    parser.add_argument("--noise-hard", type=float, default=0.0)
    parser.add_argument("-v", "--verbose", action="store_true", help="Log per-turn engine decisions.")
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    snapshot = load_catalog_snapshot(args.snapshot)
    config = load_engine_config(args.config) if args.config else EngineConfig()
    resources = snapshot.build_resources()
    noise = NoiseRates(explore=args.noise_explore, soft_confirm=args.noise_soft, hard_confirm=args.noise_hard)

    targets = args.target or [c.candidate_id for c in snapshot.candidates]
    if args.limit is not None:
        targets = targets[: args.limit]

    results = run_batch(targets, config, resources, noise, args.seed)
    batch = SimulationBatch(
        snapshot=str(args.snapshot),
        seed=args.seed,
        noise=noise,
        sessions=[_artifact(r) for r in results],
        summary=summarize(results),
    )
    if args.output:
        write_simulation_batch(output_path=args.output, batch=batch)
    print(json.dumps(batch.summary, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
