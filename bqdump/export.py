from google.api_core import exceptions as gexc
from google.cloud import bigquery

from bqdump.errors import REMOTE_ERRORS, ExportError, ValidationError
from bqdump.formats import ExportFormat, FormatSpec
from bqdump.logger import get_logger
from bqdump.naming import TableRef

logger = get_logger(__name__)


def _exact_match(wanted: str, names: list[str], kind: str, context: dict) -> str:
    if wanted in names:
        return wanted
    near = [n for n in names if n.lower() == wanted.lower()]
    if len(near) > 1:
        raise ValidationError(
            f"{kind} '{wanted}' is ambiguous, candidates: {', '.join(sorted(near))}",
            context=context,
        )
    hint = f" (did you mean '{near[0]}'?)" if near else ""
    raise ExportError(f"{kind} '{wanted}' not found{hint}", context=context)


class ExportDriver:
    def __init__(self, client: bigquery.Client, project_id: str | None = None):
        self.client = client
        self.project_id = project_id or client.project

    def table_id(self, ref: TableRef) -> str:
        return f"{self.project_id}.{ref.dataset}.{ref.table}"

    def check_table(self, ref: TableRef) -> str | None:
        """
        Confirms that dataset and table exist (exact name match) and returns
        the dataset location.
        """
        context = {"project": self.project_id, "dataset": ref.dataset, "table": ref.table}
        try:
            datasets = [d.dataset_id for d in self.client.list_datasets(project=self.project_id)]
            _exact_match(ref.dataset, datasets, "Dataset", context)

            dataset_ref = f"{self.project_id}.{ref.dataset}"
            tables = [t.table_id for t in self.client.list_tables(dataset_ref)]
            _exact_match(ref.table, tables, "Table", context)

            location = self.client.get_dataset(dataset_ref).location
        except REMOTE_ERRORS as exc:
            raise ExportError(f"Could not inspect {ref}: {exc}", context=context) from exc

        logger.debug("table_found", table=self.table_id(ref), location=location)
        return location

    def export_table(
        self,
        ref: TableRef,
        spec: FormatSpec,
        location: str | None,
        destination: str,
        field_delimiter: str = ",",
    ) -> bigquery.ExtractJob:
        """
        Runs an extract job writing compressed shards to `destination`
        (a gs:// wildcard URI) and blocks until BigQuery reports it done.
        """
        job_config = bigquery.job.ExtractJobConfig(
            destination_format=spec.format.value,
            compression=spec.codec.value,
            print_header=False,
        )
        # a delimiter is only valid for CSV; BigQuery rejects it for Avro
        if spec.format == ExportFormat.CSV:
            job_config.field_delimiter = field_delimiter

        context = {"dataset": ref.dataset, "table": ref.table, "format": spec.format.value}
        logger.info(
            "export_job_submitted",
            table=self.table_id(ref),
            destination=destination,
            compression=spec.codec.value,
            location=location,
        )
        try:
            job = self.client.extract_table(
                self.table_id(ref),
                destination,
                job_config=job_config,
                location=location,
            )
            job.result()
        except gexc.NotFound as exc:
            raise ExportError(f"Table {ref} not found: {exc}", context=context) from exc
        except gexc.Forbidden as exc:
            raise ExportError(f"Permission denied exporting {ref}: {exc}", context=context) from exc
        except REMOTE_ERRORS as exc:
            raise ExportError(f"Extract job failed for {ref}: {exc}", context=context) from exc

        logger.info("export_job_done", job_id=getattr(job, "job_id", None), destination=destination)
        return job
