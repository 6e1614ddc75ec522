"""
Command-line interface for the option calibration toolkit.

This CLI provides access to:
- Option pricing (closed form or binomial lattice)
- Greeks calculation
- Calibration of implied volatility to a quoted price
- Lattice convergence study
"""

import logging

import click

from option_calibration.core.black_scholes import ClosedFormEngine
from option_calibration.core.lattice import LatticeEngine
from option_calibration.diagnostics.convergence import DEFAULT_STUDY_STEPS, lattice_convergence
from option_calibration.solvers.calibration import calibrate
from option_calibration.utils.constants import IV_INITIAL_GUESS, LATTICE_DEFAULT_STEPS, LATTICE_SCHEMES
from option_calibration.utils.types import ContractSpec

ENGINES = ("closed-form", "lattice")


def contract_options(with_vol: bool = True):
    """Attach the contract options shared by every command."""

    def decorator(command):
        options = [
            click.option("--spot", "-S", type=float, required=True, help="Spot price"),
            click.option("--strike", "-K", type=float, required=True, help="Strike price"),
            click.option("--time", "-T", type=float, required=True, help="Time to expiry (years)"),
            click.option("--rate", "-r", type=float, default=0.0, help="Risk-free rate"),
            click.option("--div", "-q", type=float, default=0.0, help="Dividend yield"),
            click.option("--type", "-t", "option_type", type=click.Choice(["call", "put"]), default="call"),
            click.option(
                "--style", type=click.Choice(["european", "american"]), default="european"
            ),
        ]
        if with_vol:
            options.append(
                click.option("--vol", "-v", type=float, required=True, help="Volatility (annualized)")
            )
        for option in reversed(options):
            command = option(command)
        return command

    return decorator


def engine_options(command):
    """Attach engine selection options."""
    command = click.option(
        "--scheme", type=click.Choice(LATTICE_SCHEMES), default="leisen-reimer", help="Lattice scheme"
    )(command)
    command = click.option(
        "--steps", "-n", type=int, default=LATTICE_DEFAULT_STEPS, help="Lattice steps"
    )(command)
    command = click.option(
        "--engine", "-e", type=click.Choice(ENGINES), default="closed-form", help="Valuation engine"
    )(command)
    return command


def build_engine(spec: ContractSpec, engine: str, steps: int, scheme: str):
    if engine == "lattice":
        return LatticeEngine(spec, steps=steps, scheme=scheme)
    return ClosedFormEngine(spec)


def _format(value) -> str:
    return "       n/a" if value is None else f"{value:>10.6f}"


@click.group()
@click.version_option(version="0.1.0")
@click.option("--verbose", is_flag=True, help="Log solver and lattice details")
def cli(verbose):
    """Option Calibration Toolkit - closed-form and lattice pricing with Brent calibration."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@contract_options()
@engine_options
def price(spot, strike, time, rate, div, option_type, style, vol, engine, steps, scheme):
    """Calculate option price."""
    try:
        spec = ContractSpec(spot, strike, time, vol, rate, div, option_type, style)
        result = build_engine(spec, engine, steps, scheme).price()
    except ValueError as e:
        raise click.ClickException(str(e))

    click.echo(f"\n{style.capitalize()} {option_type} price ({engine}): ${result.price:.4f}")


@cli.command()
@contract_options()
@engine_options
def greeks(spot, strike, time, rate, div, option_type, style, vol, engine, steps, scheme):
    """Calculate option Greeks (the lattice engine provides delta and gamma only)."""
    try:
        spec = ContractSpec(spot, strike, time, vol, rate, div, option_type, style)
        result = build_engine(spec, engine, steps, scheme).price()
    except ValueError as e:
        raise click.ClickException(str(e))

    click.echo(f"\nGreeks for {style.capitalize()} {option_type} ({engine}):")
    click.echo(f"  Delta:  {_format(result.delta)}")
    click.echo(f"  Gamma:  {_format(result.gamma)}")
    click.echo(f"  Vega:   {_format(result.vega)}")
    click.echo(f"  Theta:  {_format(result.theta)} (per day)")
    click.echo(f"  Rho:    {_format(result.rho)}")


@cli.command()
@click.option("--market-price", "-p", type=float, required=True, help="Market price")
@contract_options(with_vol=False)
@engine_options
@click.option("--a0", type=float, default=None, help="Lower volatility estimate")
@click.option("--b0", type=float, default=None, help="Upper volatility estimate")
@click.option("--search-bracket", is_flag=True, help="Widen the estimates until they bracket the price")
@click.option("--check-bounds", is_flag=True, help="Reject prices outside the no-arbitrage bounds")
def iv(
    market_price,
    spot,
    strike,
    time,
    rate,
    div,
    option_type,
    style,
    engine,
    steps,
    scheme,
    a0,
    b0,
    search_bracket,
    check_bounds,
):
    """Solve for implied volatility."""
    try:
        spec = ContractSpec(spot, strike, time, IV_INITIAL_GUESS, rate, div, option_type, style)
        result = calibrate(
            "volatility",
            build_engine(spec, engine, steps, scheme),
            market_price,
            a0=a0,
            b0=b0,
            search_bracket=search_bracket,
            check_bounds=check_bounds,
        )
    except ValueError as e:
        raise click.ClickException(str(e))

    click.echo(f"\nImplied Volatility: {result.value:.6f} ({result.value * 100:.2f}%)")
    click.echo(f"Engine: {result.engine}")
    click.echo(f"Iterations: {result.iterations}")
    if not result.converged:
        click.echo(f"Warning: {result.message}", err=True)


@cli.command()
@contract_options()
@click.option(
    "--steps", "-n", type=int, multiple=True, help="Step count to study (repeatable)"
)
@click.option("--scheme", type=click.Choice(LATTICE_SCHEMES), default="leisen-reimer")
def convergence(spot, strike, time, rate, div, option_type, style, vol, steps, scheme):
    """Compare lattice prices with the closed form as steps increase."""
    try:
        spec = ContractSpec(spot, strike, time, vol, rate, div, option_type, style)
        table = lattice_convergence(spec, steps or DEFAULT_STUDY_STEPS, scheme)
    except ValueError as e:
        raise click.ClickException(str(e))

    click.echo(table.to_string(index=False))


if __name__ == "__main__":
    cli()
