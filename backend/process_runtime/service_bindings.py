import logging
from typing import List

from django.db import DatabaseError, transaction

from .errors import ServiceBindingDeleteError
from .models import Process, ServiceBinding


logger = logging.getLogger(__name__)


class ServiceBindingDelete:
    """Severs every service binding of a process, collecting one error per binding that could not be removed."""

    def delete(self, process: Process) -> List[ServiceBindingDeleteError]:
        errors: List[ServiceBindingDeleteError] = []
        for binding in list(ServiceBinding.objects.filter(process=process)):
            try:
                with transaction.atomic():
                    binding.delete()
            except DatabaseError as exc:
                logger.warning("Failed to delete service binding %s for process %s: %s", binding.guid, process.guid, exc)
                errors.append(ServiceBindingDeleteError(binding.guid, exc))
        return errors
