from django.apps import AppConfig


class ProcessRuntimeConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "process_runtime"
    label = "process_runtime"
