# src/tokensim/cli.py
"""tokensim Command Line Interface.

Entry point for the tokensim CLI tool.
"""

from pathlib import Path

import typer
import yaml
from pydantic import ValidationError

from tokensim import __version__
from tokensim.contracts.errors import DefinitionValidationError
from tokensim.contracts.state import SinkState
from tokensim.core.canonical import canonical_json
from tokensim.core.config import EngineSettings, load_settings
from tokensim.core.dag import FlowGraph
from tokensim.core.definition import GraphDefinition, load_definition_file
from tokensim.core.logging import configure_logging
from tokensim.engine.simulation import Simulation

app = typer.Typer(
    name="tokensim",
    help="tokensim: discrete-time token-flow simulation with full lineage.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"tokensim version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """tokensim: discrete-time token-flow simulation with full lineage."""
    pass


def _load_scenario(scenario: str) -> GraphDefinition:
    """Load a scenario file, exiting with the error list on failure."""
    try:
        return load_definition_file(Path(scenario))
    except FileNotFoundError:
        typer.echo(f"Error: Scenario file not found: {scenario}", err=True)
        raise typer.Exit(1) from None
    except yaml.YAMLError as e:
        typer.echo(f"Error: Invalid YAML in {scenario}: {e}", err=True)
        raise typer.Exit(1) from None
    except DefinitionValidationError as e:
        typer.echo("Scenario errors:", err=True)
        for error in e.errors:
            typer.echo(f"  - {error}", err=True)
        raise typer.Exit(1) from None


def _load_settings(settings: str | None, seed: int | None, verbose: bool) -> EngineSettings:
    """Resolve engine settings and configure logging from them."""
    if settings is None:
        config = EngineSettings()
    else:
        try:
            config = load_settings(Path(settings))
        except FileNotFoundError:
            typer.echo(f"Error: Settings file not found: {settings}", err=True)
            raise typer.Exit(1) from None
        except ValidationError as e:
            typer.echo("Configuration errors:", err=True)
            for error in e.errors():
                loc = ".".join(str(x) for x in error["loc"])
                typer.echo(f"  - {loc}: {error['msg']}", err=True)
            raise typer.Exit(1) from None

    if seed is not None:
        config = config.model_copy(update={"random_seed": seed})

    # Only warnings and errors unless asked; stdout carries the results
    configure_logging(
        config.logging.level if verbose else "WARNING",
        json_output=config.logging.json_output,
    )
    return config


def _simulate(definition: GraphDefinition, config: EngineSettings, ticks: int) -> Simulation:
    sim = Simulation(config)
    sim.load(definition)
    sim.step(ticks)
    return sim


@app.command()
def validate(
    scenario: str = typer.Argument(..., help="Path to scenario YAML or JSON file."),
) -> None:
    """Validate a scenario file without running it."""
    definition = _load_scenario(scenario)
    graph = FlowGraph.from_definition(definition)
    typer.echo(f"Scenario valid: {graph.node_count} nodes, {graph.edge_count} edges")
    for cycle in graph.process_cycles():
        typer.echo(f"Warning: process cycle {' -> '.join(cycle)}", err=True)


@app.command()
def run(
    scenario: str = typer.Argument(..., help="Path to scenario YAML or JSON file."),
    ticks: int = typer.Option(
        10,
        "--ticks",
        "-t",
        min=1,
        help="Number of ticks to run.",
    ),
    settings: str | None = typer.Option(
        None,
        "--settings",
        "-s",
        help="Path to engine settings YAML file.",
    ),
    seed: int | None = typer.Option(
        None,
        "--seed",
        help="Seed for source value draws (overrides settings).",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Print the global activity ledger as canonical JSON.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Show engine log output.",
    ),
) -> None:
    """Run a scenario for a number of ticks."""
    definition = _load_scenario(scenario)
    config = _load_settings(settings, seed, verbose)
    sim = _simulate(definition, config, ticks)

    if json_output:
        try:
            typer.echo(canonical_json([entry.to_dict() for entry in sim.global_ledger()]))
        except ValueError as e:
            typer.echo(f"Error: Ledger cannot be written as JSON: {e}", err=True)
            raise typer.Exit(1) from None
        return

    typer.echo(f"Ran {sim.tick} ticks, {len(sim.lineage)} tokens created")
    for node_id, state in sim.states.items():
        if isinstance(state, SinkState):
            typer.echo(f"  {node_id}: consumed {state.consumed_token_count}")
    if sim.error_messages:
        typer.echo(f"Errors ({len(sim.error_messages)}):")
        for message in sim.error_messages:
            typer.echo(f"  - {message}")


@app.command()
def lineage(
    scenario: str = typer.Argument(..., help="Path to scenario YAML or JSON file."),
    sink: str = typer.Option(
        ...,
        "--sink",
        help="Id of the sink whose tokens are explained.",
    ),
    ticks: int = typer.Option(
        10,
        "--ticks",
        "-t",
        min=1,
        help="Number of ticks to run.",
    ),
    seed: int | None = typer.Option(
        None,
        "--seed",
        help="Seed for source value draws.",
    ),
) -> None:
    """Print the lineage chain of every token a sink retained."""
    definition = _load_scenario(scenario)
    config = _load_settings(None, seed, verbose=False)
    sim = _simulate(definition, config, ticks)

    state = sim.states.get(sink)
    if not isinstance(state, SinkState):
        typer.echo(f"Error: '{sink}' is not a sink in this scenario", err=True)
        raise typer.Exit(1)

    if not state.consumed_tokens:
        typer.echo(f"{sink} consumed no tokens in {ticks} ticks")
        return
    for token in state.consumed_tokens:
        record = sim.token_lineage(token.token_id)
        level = record.generation_level if record else 0
        typer.echo(f"[gen {level}] value={token.value}")
        typer.echo(f"  {sim.lineage.lineage_chain(token.token_id)}")


if __name__ == "__main__":
    app()
