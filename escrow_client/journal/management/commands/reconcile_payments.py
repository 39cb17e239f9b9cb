from django.core.management.base import BaseCommand, CommandError

from ledger.exceptions import LedgerError
from milestones.services import MilestoneService


class Command(BaseCommand):
    help = "Reconciles locally submitted payments of a project against the ledger's milestones."

    def add_arguments(self, parser):
        parser.add_argument('project_id', type=str, help='Project whose payment journal to reconcile')

    def handle(self, *args, **options):
        project_id = options['project_id']
        service = MilestoneService()
        journal = service.journal_factory(project_id)
        pending_before = journal.submitted()

        try:
            service.refresh(project_id)
        except LedgerError as e:
            raise CommandError(f"Could not fetch milestones for project {project_id}: {str(e)}")

        still_pending = journal.load().submitted()
        confirmed = sorted(pending_before - still_pending)
        still_pending = sorted(still_pending)

        if confirmed:
            self.stdout.write(self.style.SUCCESS(f"Confirmed by ledger: {', '.join(str(i) for i in confirmed)}"))
        else:
            self.stdout.write("No submitted payments were confirmed.")

        if still_pending:
            self.stdout.write(self.style.WARNING(
                f"Still awaiting manual processing: {', '.join(str(i) for i in still_pending)}"
            ))
