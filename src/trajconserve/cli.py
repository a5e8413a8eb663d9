"""
Command line interface for trajconserve.

Each command accepts a JSON configuration file with the fields of the
matching interface dataclass, and individual fields set with
`--set KEY=VALUE` where VALUE is parsed as JSON when possible.

    trajconserve preprocess --set adata=simulated --set n_bins=50
    trajconserve fit --config fit.json
    trajconserve conserve --set 'plot_types=["scatter", "histogram"]'
"""

import json
from pathlib import Path

import click
from beartype.typing import Any, Dict, Optional, Tuple

from trajconserve import __version__
from trajconserve.interfaces import (
    ConservationInterface,
    ExtractMetricInterface,
    FitModelsInterface,
    PreprocessDataInterface,
)
from trajconserve.logging import configure_logging
from trajconserve.tasks.conservation import conservation_dataset, extract_dataset
from trajconserve.tasks.preprocess import preprocess_dataset
from trajconserve.tasks.run_models import fit_dataset
from trajconserve.utils import pretty_log_dict

logger = configure_logging(__name__)


def _parse_value(value: str) -> Any:
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


def _load_config(
    interface: type,
    config: Optional[str],
    settings: Tuple[str, ...],
):
    values: Dict[str, Any] = {}
    if config is not None:
        values.update(json.loads(Path(config).read_text()))
    for setting in settings:
        key, separator, value = setting.partition("=")
        if not separator:
            raise click.BadParameter(
                f"Expected KEY=VALUE, got {setting!r}", param_hint="--set"
            )
        values[key.strip()] = _parse_value(value)

    known = {field for field in interface.__dataclass_fields__}
    unknown = sorted(set(values) - known)
    if unknown:
        raise click.BadParameter(
            f"Unknown fields {unknown} for {interface.__name__}",
            param_hint="--config/--set",
        )
    instance = interface.from_dict(values)
    logger.info(
        f"{interface.__name__}:\n{pretty_log_dict(instance.to_dict())}"
    )
    return instance


config_option = click.option(
    "--config",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="JSON file of configuration fields.",
)
set_option = click.option(
    "--set",
    "settings",
    multiple=True,
    metavar="KEY=VALUE",
    help="Set a single configuration field.",
)


@click.group()
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context):
    """Trajectory conservation analysis."""
    ctx.ensure_object(dict)


@main.command()
@config_option
@set_option
def preprocess(config, settings):
    """Bin an AnnData data set into a batch × bin × gene tensor."""
    interface = _load_config(PreprocessDataInterface, config, settings)
    path = preprocess_dataset(**interface.to_dict())
    click.echo(str(path))


@main.command()
@config_option
@set_option
@click.pass_context
def fit(ctx: click.Context, config, settings):
    """Fit trajectory models and write the metric store."""
    interface = _load_config(FitModelsInterface, config, settings)
    path = fit_dataset(**interface.to_dict(), engine=ctx.obj.get("engine"))
    click.echo(str(path))


@main.command()
@config_option
@set_option
def conserve(config, settings):
    """Rank genes by conservation of a stored metric."""
    interface = _load_config(ConservationInterface, config, settings)
    path = conservation_dataset(**interface.to_dict())
    click.echo(str(path))


@main.command()
@config_option
@set_option
def extract(config, settings):
    """Write a stored metric as a batch × gene table."""
    interface = _load_config(ExtractMetricInterface, config, settings)
    path = extract_dataset(**interface.to_dict())
    click.echo(str(path))
