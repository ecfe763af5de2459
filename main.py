from __future__ import annotations

import argparse
import signal

from flock_brain import ACTIVATIONS, Topology
from flock_constants import (
    CROSSOVER_METHOD,
    ELITE_COUNT,
    EYE_CELLS,
    FOOD_COUNT,
    GENERATIONS,
    HIDDEN_ACTIVATION,
    HIDDEN_LAYERS,
    MAX_TICKS,
    MUTATION_RATE,
    MUTATION_STRENGTH,
    OUTPUT_ACTIVATION,
    OUTPUT_SIZE,
    POPULATION_SIZE,
    SEED,
    SELECTION_METHOD,
    TOURNAMENT_SIZE,
    WORKERS,
)
from flock_errors import SandboxError
from flock_evolution import SELECTION_METHODS
from flock_genome import CROSSOVER_METHODS
from flock_report import (
    describe_history,
    format_generation_line,
    print_run_header,
    safe_print,
    should_log_generation,
    should_stop_early,
)
from flock_session import TrainingConfig, TrainingSession

if hasattr(signal, "SIGPIPE"):
    signal.signal(signal.SIGPIPE, signal.SIG_DFL)


def parse_hidden_layers(raw: str) -> tuple[int, ...]:
    parts = [item.strip() for item in raw.split(",") if item.strip()]
    values = tuple(int(item) for item in parts)
    if any(value < 1 for value in values):
        raise ValueError("Hidden layer sizes must be positive.")
    return values


def build_config(args: argparse.Namespace) -> TrainingConfig:
    if args.hidden.strip().lower() == "auto":
        hidden = Topology.for_eye(args.eye_cells).hidden
    else:
        hidden = parse_hidden_layers(args.hidden)
    topology = Topology(
        inputs=args.eye_cells,
        hidden=hidden,
        outputs=OUTPUT_SIZE,
        activations=(args.hidden_activation,) * len(hidden) + (args.output_activation,),
    )
    return TrainingConfig(
        seed=args.seed,
        population_size=args.population_size,
        elite_count=args.elites,
        mutation_rate=args.mutation_rate,
        mutation_strength=args.mutation_strength,
        selection=args.selection,
        tournament_size=args.tournament_size,
        crossover=args.crossover,
        topology=topology,
        max_ticks=args.max_ticks,
        food_count=args.food_count,
        vary_world_per_generation=args.vary_world,
        randomized_starts=args.randomized_starts,
        workers=max(1, args.workers),
    )


def train(
    session: TrainingSession,
    generations: int,
    log_interval: int = 1,
    early_stop: bool = False,
    save_path: str | None = None,
) -> TrainingSession:
    print_run_header("Flock Training", session.config.seed)
    topology = session.config.topology
    safe_print(
        f"Run profile: population={session.config.population_size}, elites={session.config.elite_count}, "
        f"topology={list(topology.layer_sizes)} ({topology.gene_count} genes), max ticks={session.config.max_ticks}"
    )
    safe_print(
        f"Operators: selection={session.config.selection}, crossover={session.config.crossover}, "
        f"mutation rate={session.config.mutation_rate:.2f}, strength={session.config.mutation_strength:.2f}\n"
    )

    session.start_or_resume()
    first_generation = session.generation
    last_generation = first_generation + generations - 1
    best_history = [stats.best_fitness for stats in session.history]

    for _ in session.iter_advance(generations):
        stats = session.history[-1]
        best_history.append(stats.best_fitness)
        if should_log_generation(stats.generation, last_generation, log_interval):
            safe_print(format_generation_line(stats))

        if early_stop:
            should_stop, reason = should_stop_early(best_history)
            if should_stop:
                safe_print(f"\nEarly stop: {reason} detected at generation {stats.generation}.")
                session.request_stop()

    safe_print()
    safe_print(
        describe_history(
            [stats.best_fitness for stats in session.history],
            [stats.average_fitness for stats in session.history],
        )
    )

    if save_path:
        session.save(save_path)
        safe_print(f"Saved session: {save_path} (next generation {session.generation})")
    return session


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Evolve neural-network bird brains with a genetic algorithm.")
    parser.add_argument("--generations", type=int, default=GENERATIONS, help=f"Generations to run (default: {GENERATIONS}).")
    parser.add_argument("--seed", type=int, default=SEED, help="Random seed for reproducibility.")
    parser.add_argument("--population-size", type=int, default=POPULATION_SIZE, help="Agents per generation.")
    parser.add_argument("--elites", type=int, default=ELITE_COUNT, help="Genomes copied unchanged each generation.")
    parser.add_argument("--mutation-rate", type=float, default=MUTATION_RATE, help="Per-gene mutation probability.")
    parser.add_argument("--mutation-strength", type=float, default=MUTATION_STRENGTH, help="Maximum mutation step.")
    parser.add_argument("--selection", choices=sorted(SELECTION_METHODS), default=SELECTION_METHOD)
    parser.add_argument("--tournament-size", type=int, default=TOURNAMENT_SIZE)
    parser.add_argument("--crossover", choices=sorted(CROSSOVER_METHODS), default=CROSSOVER_METHOD)
    parser.add_argument("--eye-cells", type=int, default=EYE_CELLS, help="Eye photoreceptors (network inputs).")
    parser.add_argument(
        "--hidden",
        default=",".join(str(size) for size in HIDDEN_LAYERS),
        help="Comma-separated hidden layer sizes, or 'auto' for one layer of 2x eye cells (default: %(default)s).",
    )
    parser.add_argument("--hidden-activation", choices=sorted(ACTIVATIONS), default=HIDDEN_ACTIVATION)
    parser.add_argument("--output-activation", choices=sorted(ACTIVATIONS), default=OUTPUT_ACTIVATION)
    parser.add_argument("--max-ticks", type=int, default=MAX_TICKS, help="Simulation ticks per evaluation.")
    parser.add_argument("--food-count", type=int, default=FOOD_COUNT, help="Food items in the arena.")
    parser.add_argument("--vary-world", action="store_true", help="Draw a new food layout every generation.")
    parser.add_argument("--randomized-starts", action="store_true", help="Seeded random start heading per agent.")
    parser.add_argument("--workers", type=int, default=WORKERS, help="Evaluation processes (default: 1).")
    parser.add_argument("--log-interval", type=int, default=1, help="Print stats every N generations.")
    parser.add_argument("--early-stop", action="store_true", help="Stop once the best fitness plateaus.")
    parser.add_argument("--save", default=None, help="Write the session to this JSON file when done.")
    parser.add_argument("--resume", default=None, help="Continue a session saved with --save.")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        if args.resume:
            session = TrainingSession.load(args.resume)
        else:
            session = TrainingSession(build_config(args))
        train(
            session,
            generations=max(0, args.generations),
            log_interval=max(1, args.log_interval),
            early_stop=args.early_stop,
            save_path=args.save,
        )
    except (SandboxError, ValueError) as error:
        safe_print(f"Error: {error}")
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
