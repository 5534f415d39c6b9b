"""
orderflow CLI - seed the ledgers and place orders against the SQLite backend.

Examples:
    orderflow add-product sku-1 --price 9.99 --stock 100
    orderflow open-wallet alice --balance 50
    orderflow place-order alice sku-1:2 sku-2:1 --idempotency-key req-42
    orderflow orders alice
"""

import asyncio
from dataclasses import replace
from decimal import Decimal

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from orderflow.core.config import FulfillmentConfig
from orderflow.core.exceptions import OrderError
from orderflow.ledgers.factory import Ledgers, build_local_coordinator, create_ledgers
from orderflow.types import OrderItem

console = Console()


class OrderedGroup(click.Group):
    """Click Group that lists commands in the order they were added."""

    def list_commands(self, ctx):
        return list(self.commands.keys())


def _run(ctx: click.Context, operation):
    """
    Open the SQLite ledgers in the configured data directory, run
    ``operation(ledgers, config)`` and close them again.

    Taxonomy errors are printed with their code and exit with status 1.
    """
    config: FulfillmentConfig = ctx.obj["config"]

    async def runner():
        async with create_ledgers("sqlite", config.data_dir) as ledgers:
            return await operation(ledgers, config)

    try:
        return asyncio.run(runner())
    except OrderError as e:
        console.print(f"[bold red]{e.code}[/bold red] ({e.reason}) {e.message}")
        ctx.exit(1)


def _parse_item(value: str) -> OrderItem:
    product_id, sep, quantity = value.rpartition(":")
    if not sep or not product_id:
        msg = f"Expected PRODUCT:QTY, got '{value}'"
        raise click.BadParameter(msg)
    try:
        return OrderItem(product_id=product_id, quantity=int(quantity))
    except ValueError:
        msg = f"Quantity must be an integer in '{value}'"
        raise click.BadParameter(msg) from None


@click.group(cls=OrderedGroup)
@click.version_option(version="1.0.0", prog_name="orderflow")
@click.option(
    "--data-dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Directory holding the SQLite ledgers (default: ORDERFLOW_DATA_DIR or ./data)",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Saga log level on stderr (default: ORDERFLOW_LOG_LEVEL or INFO)",
)
@click.pass_context
def cli(ctx, data_dir, log_level):
    """
    orderflow - order fulfillment saga over stock and wallet ledgers.

    \b
    Seeding:
      add-product      Create or update a product
      open-wallet      Open a user's wallet
    \b
    Inspection:
      stock            Show a product's price and stock
      balance          Show a user's wallet balance
      payments         Show the payment trail of an order
      orders           List a user's orders
    \b
    Fulfillment:
      place-order      Run the order saga
    """
    config = FulfillmentConfig.from_env()
    if data_dir is not None:
        config = replace(config, data_dir=data_dir)
    if log_level is not None:
        config = replace(config, log_level=log_level.upper())
    config.setup_logging()
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


@cli.command("add-product")
@click.argument("product_id")
@click.option("--price", required=True, type=str, help="Unit price")
@click.option("--stock", default=0, type=click.IntRange(min=0), help="Units in stock")
@click.option("--name", default="", help="Display name")
@click.pass_context
def add_product(ctx, product_id, price, stock, name):
    """Create or update a product."""

    async def op(ledgers: Ledgers, config):
        return await ledgers.stock.add_product(product_id, price, stock, name=name)

    product = _run(ctx, op)
    console.print(
        f"[green]✓[/green] {product.product_id} price={product.price} stock={product.stock}"
    )


@cli.command("open-wallet")
@click.argument("user_id")
@click.option("--balance", default="0", help="Opening balance")
@click.option("--profile-id", default=None, help="Explicit profile id")
@click.pass_context
def open_wallet(ctx, user_id, balance, profile_id):
    """Open the wallet-bearing profile of a user."""

    async def op(ledgers: Ledgers, config):
        return await ledgers.wallets.open_wallet(user_id, balance, profile_id=profile_id)

    profile = _run(ctx, op)
    console.print(
        f"[green]✓[/green] wallet {profile.profile_id} for {profile.user_id} "
        f"balance={profile.balance}"
    )


@cli.command()
@click.argument("product_id", required=False)
@click.pass_context
def stock(ctx, product_id):
    """Show one product, or every product when no id is given."""

    async def op(ledgers: Ledgers, config):
        if product_id:
            return [await ledgers.stock.get_product(product_id)]
        return await ledgers.stock.list_products()

    products = _run(ctx, op)
    table = Table(title="Products")
    table.add_column("Product", style="cyan")
    table.add_column("Name")
    table.add_column("Price", justify="right")
    table.add_column("Stock", justify="right")
    for product in products:
        table.add_row(product.product_id, product.name, str(product.price), str(product.stock))
    console.print(table)


@cli.command()
@click.argument("user_id")
@click.pass_context
def balance(ctx, user_id):
    """Show a user's wallet balance."""

    async def op(ledgers: Ledgers, config):
        return await ledgers.wallets.resolve_profile(user_id)

    profile = _run(ctx, op)
    console.print(f"{profile.user_id} ({profile.profile_id}): [bold]{profile.balance}[/bold]")


@cli.command("place-order")
@click.argument("user_id")
@click.argument("items", nargs=-1, required=True)
@click.option("--idempotency-key", "-k", default=None, help="Replay-safe request key")
@click.pass_context
def place_order(ctx, user_id, items, idempotency_key):
    """
    Place an order: USER_ID PRODUCT:QTY [PRODUCT:QTY ...]

    \b
    Example:
        orderflow place-order alice sku-1:2 sku-2:1
    """
    order_items = [_parse_item(item) for item in items]

    async def op(ledgers: Ledgers, config):
        coordinator = build_local_coordinator(ledgers, config)
        return await coordinator.create_order(
            user_id, order_items, idempotency_key=idempotency_key
        )

    order = _run(ctx, op)
    lines = "\n".join(
        f"  {line.product_id} x{line.quantity} @ {line.unit_price}" for line in order.lines
    )
    console.print(
        Panel(
            f"[bold]Order {order.order_id}[/bold]\n\n"
            f"User: {order.user_id}\n"
            f"Items:\n{lines}\n"
            f"Total: {order.total}",
            title="Order placed",
            border_style="green",
        )
    )


@cli.command()
@click.argument("order_id")
@click.pass_context
def payments(ctx, order_id):
    """Show the payment trail of an order."""

    async def op(ledgers: Ledgers, config):
        return await ledgers.payments.history(order_id)

    records = _run(ctx, op)
    if not records:
        console.print(f"[yellow]No payments for order {order_id}[/yellow]")
        return
    table = Table(title=f"Payments for {order_id}")
    table.add_column("Payment", style="cyan")
    table.add_column("User")
    table.add_column("Amount", justify="right")
    table.add_column("Status")
    table.add_column("At")
    for record in records:
        table.add_row(
            record.payment_id,
            record.user_id,
            str(record.amount),
            record.status.value,
            record.created_at.isoformat(),
        )
    console.print(table)


@cli.command()
@click.argument("user_id")
@click.pass_context
def orders(ctx, user_id):
    """List a user's orders, newest first."""

    async def op(ledgers: Ledgers, config):
        return await ledgers.orders.list_for_user(user_id)

    found = _run(ctx, op)
    if not found:
        console.print(f"[yellow]No orders for {user_id}[/yellow]")
        return
    table = Table(title=f"Orders for {user_id}")
    table.add_column("Order", style="cyan")
    table.add_column("Items", justify="right")
    table.add_column("Total", justify="right")
    table.add_column("Created")
    for order in found:
        created = order.created_at.isoformat() if order.created_at else ""
        table.add_row(order.order_id, str(order.item_count), str(order.total), created)
    console.print(table)
    console.print(f"Total spent: {sum((o.total for o in found), Decimal(0))}")


def main():
    """Entry point for the ``orderflow`` console script."""
    cli(obj={})


if __name__ == "__main__":
    main()
