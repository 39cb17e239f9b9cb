from django.core.management.base import BaseCommand, CommandError

from ledger.client import EscrowLedgerClient
from ledger.exceptions import LedgerError
from milestones.status import label, resolve

from escrow.services import ERROR_MESSAGES


class Command(BaseCommand):
    help = "Shows the escrow status of a project and the canonical status of each milestone."

    def add_arguments(self, parser):
        parser.add_argument('project_id', type=str, help='Project whose escrow to inspect')

    def handle(self, *args, **options):
        project_id = options['project_id']

        try:
            account = EscrowLedgerClient().get_escrow_status(project_id)
        except LedgerError as e:
            raise CommandError(f"{ERROR_MESSAGES.get(e.error_type, 'Ledger Error')}: {str(e)}")

        self.stdout.write(self.style.SUCCESS(f"Escrow for project {project_id}: {account.status}"))
        if account.order_id:
            self.stdout.write(f"Order {account.order_id}, amount {account.amount} {account.currency}")

        if not account.milestones:
            self.stdout.write("No milestones reported.")
            return

        for milestone in account.milestones:
            self.stdout.write(
                f"  [{milestone.index}] {milestone.title or '-'}: {label(resolve(milestone))} ({milestone.amount})"
            )
