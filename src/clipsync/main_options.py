"""Click option helpers for selecting exactly one run mode."""
import click


class ModeOption(click.Option):
    """Flag option naming one run mode; conflicts with the other modes.

    Pass ``conflicts_with`` with the names of the other mode flags. Using two
    mode flags together is a usage error.
    """

    def __init__(self, *args, **kwargs):
        """Initialize with the conflicts_with list of other mode flags."""
        self.conflicts_with = kwargs.pop("conflicts_with", [])
        kwargs.setdefault("is_flag", True)
        super().__init__(*args, **kwargs)

    def handle_parse_result(self, ctx, opts, args):
        """Reject the option when a conflicting mode flag was also given."""
        if opts.get(self.name):
            clashes = [other for other in self.conflicts_with if opts.get(other)]
            if clashes:
                others = ", ".join(f"--{other}" for other in clashes)
                raise click.UsageError(
                    f"Option --{self.name} cannot be combined with {others}", ctx=ctx
                )
        return super().handle_parse_result(ctx, opts, args)
