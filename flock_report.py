from __future__ import annotations

import statistics
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from flock_evolution import GenerationStats


def safe_print(*args, **kwargs) -> None:
    try:
        print(*args, **kwargs)
    except BrokenPipeError:
        raise SystemExit(0)


def session_codename(seed_value: int) -> str:
    adjectives = ["Silent", "Emerald", "Neon", "Arc", "Obsidian", "Solar", "Crimson", "Aurora"]
    nouns = ["Flock", "Lark", "Swift", "Drift", "Heron", "Beacon", "Kestrel", "Nexus"]
    key = abs(int(seed_value))
    adj = adjectives[key % len(adjectives)]
    noun = nouns[(key // len(adjectives)) % len(nouns)]
    return f"{adj} {noun}"


def print_run_header(mode_label: str, seed_value: int) -> None:
    safe_print("=" * 64)
    safe_print(f"{mode_label} | Session: {session_codename(seed_value)} | Seed: {seed_value}")
    safe_print("Objective: evolve bird brains that find food and stay in the arena.")
    safe_print("=" * 64)


def format_generation_line(stats: GenerationStats) -> str:
    line = (
        f"Gen {stats.generation:03d} | best fitness={stats.best_fitness:6.2f} | "
        f"avg fitness={stats.average_fitness:6.2f} | worst={stats.worst_fitness:6.2f}"
    )
    if stats.statuses:
        counts = ", ".join(f"{name}={count}" for name, count in sorted(stats.statuses.items()))
        line += f" | {counts}"
    if stats.faults:
        line += f" | numeric faults={stats.faults}"
    return line


def should_log_generation(generation: int, total_generations: int | None, log_interval: int) -> bool:
    if log_interval <= 1:
        return True
    if generation == 1:
        return True
    if total_generations is not None and generation == total_generations:
        return True
    return generation % log_interval == 0


def should_stop_early(
    best_history: list[float],
    min_generations: int = 25,
    patience: int = 15,
    plateau_delta: float = 0.05,
) -> tuple[bool, str]:
    if len(best_history) < max(min_generations, patience):
        return False, ""

    window = best_history[-patience:]
    if max(window) - min(window) < plateau_delta:
        return True, "plateau"
    return False, ""


def describe_history(best_history: list[float], average_history: list[float]) -> str:
    if not best_history:
        return "no generations evaluated yet"
    spread = statistics.pstdev(average_history) if len(average_history) > 1 else 0.0
    return (
        f"{len(best_history)} generations | best={max(best_history):.2f} | "
        f"last avg={average_history[-1]:.2f} | avg spread={spread:.2f}"
    )
