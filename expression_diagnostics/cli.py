"""
Command-line interface for expression diagnostics.
"""

import click
import dataclasses
import json
import logging

from .config import (
    DISTRIBUTIONS, load_expression_from_json, load_mood_constraints_from_json,
    load_simulation_config_from_json,
)
from .diagnostics import InvariantValidator, build_diagnostic_facts
from .profiles import DEFAULT_PROFILE, PROFILE_NAMES, apply_profile_overrides, config_from_profile
from .registry import InMemoryRegistry
from .results import clause_failures_frame
from .simulation import MonteCarloSimulator


@click.command()
@click.argument('expression_json', type=click.Path(exists=True))
@click.option(
    '--registry', '-r', 'registry_path',
    type=click.Path(exists=True),
    required=True,
    help='Prototype registry JSON ({"lookups": {...}} or {"emotions": ..., "sexual": ...})'
)
@click.option(
    '--profile', '-p',
    type=click.Choice(PROFILE_NAMES),
    default=DEFAULT_PROFILE,
    help=f'Sampling profile (default: {DEFAULT_PROFILE})'
)
@click.option(
    '--config', 'config_path',
    type=click.Path(exists=True),
    help='Simulation config JSON (replaces the profile)'
)
@click.option(
    '--n-samples', '-s',
    type=int,
    default=None,
    help='Number of samples (overrides profile/config)'
)
@click.option(
    '--distribution',
    type=click.Choice(list(DISTRIBUTIONS)),
    default=None,
    help='Sampling distribution: uniform, gaussian or correlated'
)
@click.option(
    '--seed',
    type=int,
    help='Random seed for reproducibility'
)
@click.option(
    '--reservoir-limit',
    type=int,
    default=None,
    help='Max in-regime samples kept in the reservoir'
)
@click.option(
    '--mood-constraints',
    type=click.Path(exists=True),
    help='Mood-regime constraints JSON (list of {var_path, operator, threshold})'
)
@click.option(
    '--sensitivity/--no-sensitivity',
    default=True,
    help='Run threshold sensitivity sweeps over stored contexts'
)
@click.option(
    '--top-n',
    type=int,
    default=3,
    help='Number of clauses given global sweeps (default: 3)'
)
@click.option(
    '--output', '-o',
    type=click.Path(),
    help='Output file for results JSON'
)
@click.option(
    '--clauses-csv',
    type=click.Path(),
    help='Write the clause-failure table to this CSV file'
)
@click.option(
    '--verbose/--quiet', '-v/-q',
    default=True,
    help='Verbose output'
)
def main(
    expression_json,
    registry_path,
    profile,
    config_path,
    n_samples,
    distribution,
    seed,
    reservoir_limit,
    mood_constraints,
    sensitivity,
    top_n,
    output,
    clauses_csv,
    verbose,
):
    """
    Estimate how often an expression fires and explain what blocks it.

    EXPRESSION_JSON: Path to the expression definition JSON file
    """
    if verbose:
        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    if n_samples is not None and n_samples <= 0:
        raise click.BadParameter("n-samples must be a positive integer", param_hint="'--n-samples'")
    if reservoir_limit is not None and reservoir_limit < 0:
        raise click.BadParameter("reservoir-limit must be >= 0", param_hint="'--reservoir-limit'")
    if top_n < 0:
        raise click.BadParameter("top-n must be >= 0", param_hint="'--top-n'")

    try:
        expression = load_expression_from_json(expression_json)
        registry = InMemoryRegistry.from_json(registry_path)
        overrides = {
            'sample_count': n_samples,
            'distribution': distribution,
            'seed': seed,
            'mood_regime_sample_reservoir_limit': reservoir_limit,
            'mood_constraints': load_mood_constraints_from_json(mood_constraints) if mood_constraints else None,
        }
        if config_path:
            base = load_simulation_config_from_json(config_path)
            config = dataclasses.replace(base, **apply_profile_overrides({}, overrides))
        else:
            config = config_from_profile(profile, **overrides)
    except ValueError as e:
        raise click.ClickException(str(e))

    click.echo("Running simulation...")
    click.echo(f"  Expression: {expression.id}")
    click.echo(f"  Samples: {config.sample_count}")
    click.echo(f"  Distribution: {config.distribution}")
    if config.seed is not None:
        click.echo(f"  Seed: {config.seed}")
    if config.mood_constraints:
        click.echo(f"  Mood regime: {' && '.join(c.describe() for c in config.mood_constraints)}")

    simulator = MonteCarloSimulator(registry)
    try:
        result = simulator.simulate(expression, config)
    except ValueError as e:
        raise click.ClickException(str(e))

    checks = InvariantValidator().validate(build_diagnostic_facts(result))
    sweeps = {'marginal': [], 'global': []}
    if sensitivity:
        sweeps = simulator.compute_sensitivity_sweeps(expression, result, top_n=top_n)

    ci = result.confidence_interval
    click.echo("\n" + "=" * 60)
    click.echo("EXPRESSION DIAGNOSTICS")
    click.echo("=" * 60)
    click.echo(f"\nTrigger rate: {result.trigger_rate:.4%} "
               f"({result.trigger_count}/{result.sample_count})")
    click.echo(f"{ci.level:.0%} CI ({ci.method}): [{ci.low:.4%}, {ci.high:.4%}]")
    click.echo(f"In regime: {result.in_regime_sample_count}/{result.sample_count}")
    if result.sampling_metadata is not None:
        click.echo(f"Sampling: {result.sampling_metadata.description}")
        click.echo(f"  Note: {result.sampling_metadata.note}")

    if result.unseeded_var_warnings:
        click.echo("\nUnseeded variables:")
        for w in result.unseeded_var_warnings:
            click.echo(f"  {w.path} ({w.reason}) {w.suggestion}")

    if result.clause_failures:
        click.echo("\nTop blockers:")
        for i, f in enumerate(result.clause_failures[:5]):
            last_mile = f.last_mile_fail_rate
            last_mile_str = f"{last_mile:.1%}" if last_mile is not None else "n/a"
            click.echo(f"  {i+1}. {f.description}: fail {f.failure_rate:.1%}, "
                       f"last-mile {last_mile_str}, near-miss {f.near_miss_rate:.1%}")

    for sweep in sweeps['global']:
        rates = ', '.join(f"{p.threshold:g}:{p.pass_rate:.2%}" for p in sweep.grid)
        click.echo(f"\nGlobal sweep {sweep.variable_path} {sweep.operator}: {rates}")

    failed = [c for c in checks if not c.ok]
    click.echo(f"\nInvariants: {len(checks) - len(failed)}/{len(checks)} ok")
    for c in failed:
        click.echo(f"  FAILED {c.id}: {c.detail}", err=True)

    if clauses_csv:
        clause_failures_frame(result).to_csv(clauses_csv)
        click.echo(f"\nClause table exported to {clauses_csv}")

    if output:
        output_data = {
            'result': result.to_dict(),
            'sensitivity': {
                kind: [s.to_dict() for s in results] for kind, results in sweeps.items()
            },
            'invariants': [c.to_dict() for c in checks],
        }
        with open(output, 'w') as f:
            json.dump(output_data, f, indent=2, default=str)
        click.echo(f"Diagnostics saved to {output}")


if __name__ == '__main__':
    main()
