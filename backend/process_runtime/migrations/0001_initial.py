from django.db import migrations, models
import django.db.models.deletion
import process_runtime.models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="QuotaDefinition",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=120, unique=True)),
                ("memory_limit_mb", models.IntegerField(default=-1)),
                ("instance_memory_limit_mb", models.IntegerField(default=-1)),
                ("app_instance_limit", models.IntegerField(default=-1)),
            ],
        ),
        migrations.CreateModel(
            name="Organization",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("guid", models.CharField(default=process_runtime.models._guid, max_length=36, unique=True)),
                ("name", models.CharField(max_length=255, unique=True)),
                (
                    "status",
                    models.CharField(
                        choices=[("active", "Active"), ("suspended", "Suspended")], default="active", max_length=20
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "quota_definition",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="organizations",
                        to="process_runtime.quotadefinition",
                    ),
                ),
            ],
        ),
        migrations.CreateModel(
            name="Space",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("guid", models.CharField(default=process_runtime.models._guid, max_length=36, unique=True)),
                ("name", models.CharField(max_length=255)),
                ("allow_ssh", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "organization",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="spaces",
                        to="process_runtime.organization",
                    ),
                ),
                (
                    "space_quota_definition",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="spaces",
                        to="process_runtime.quotadefinition",
                    ),
                ),
            ],
            options={
                "unique_together": {("organization", "name")},
            },
        ),
        migrations.CreateModel(
            name="Domain",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("guid", models.CharField(default=process_runtime.models._guid, max_length=36, unique=True)),
                ("name", models.CharField(max_length=253, unique=True)),
                (
                    "owning_organization",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="owned_domains",
                        to="process_runtime.organization",
                    ),
                ),
                (
                    "shared_organizations",
                    models.ManyToManyField(
                        blank=True, related_name="shared_private_domains", to="process_runtime.organization"
                    ),
                ),
            ],
        ),
        migrations.CreateModel(
            name="Route",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("guid", models.CharField(default=process_runtime.models._guid, max_length=36, unique=True)),
                ("host", models.CharField(blank=True, default="", max_length=63)),
                ("path", models.CharField(blank=True, default="", max_length=128)),
                ("route_service_url", models.TextField(blank=True, null=True)),
                (
                    "domain",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="routes", to="process_runtime.domain"
                    ),
                ),
                (
                    "space",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="routes", to="process_runtime.space"
                    ),
                ),
            ],
        ),
        migrations.CreateModel(
            name="Stack",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("guid", models.CharField(default=process_runtime.models._guid, max_length=36, unique=True)),
                ("name", models.CharField(max_length=120, unique=True)),
                ("description", models.TextField(blank=True)),
            ],
        ),
        migrations.CreateModel(
            name="Buildpack",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("guid", models.CharField(default=process_runtime.models._guid, max_length=36, unique=True)),
                ("name", models.CharField(max_length=120, unique=True)),
                ("key", models.CharField(blank=True, default="", max_length=255)),
                ("position", models.PositiveIntegerField(default=1)),
                ("enabled", models.BooleanField(default=True)),
                ("locked", models.BooleanField(default=False)),
            ],
            options={
                "ordering": ["position", "name"],
            },
        ),
        migrations.CreateModel(
            name="Application",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("guid", models.CharField(default=process_runtime.models._guid, max_length=36, unique=True)),
                ("name", models.CharField(max_length=255)),
                (
                    "lifecycle_type",
                    models.CharField(
                        choices=[("buildpack", "Buildpack"), ("docker", "Docker")], default="buildpack", max_length=20
                    ),
                ),
                ("lifecycle_buildpack", models.CharField(blank=True, max_length=255, null=True)),
                ("lifecycle_stack", models.CharField(blank=True, max_length=120, null=True)),
                ("environment_variables", models.JSONField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "space",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="applications",
                        to="process_runtime.space",
                    ),
                ),
            ],
        ),
        migrations.CreateModel(
            name="Process",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("guid", models.CharField(default=process_runtime.models._guid, max_length=36, unique=True)),
                ("name", models.CharField(blank=True, default="", max_length=255)),
                ("type", models.CharField(default="web", max_length=120)),
                (
                    "state",
                    models.CharField(
                        choices=[("STOPPED", "Stopped"), ("STARTED", "Started")], default="STOPPED", max_length=20
                    ),
                ),
                (
                    "package_state",
                    models.CharField(
                        choices=[("PENDING", "Pending"), ("STAGED", "Staged"), ("FAILED", "Failed")],
                        default="PENDING",
                        max_length=20,
                    ),
                ),
                ("package_hash", models.CharField(blank=True, max_length=255, null=True)),
                ("package_updated_at", models.DateTimeField(blank=True, null=True)),
                ("package_pending_since", models.DateTimeField(blank=True, null=True)),
                ("staging_task_id", models.CharField(blank=True, default="", max_length=255)),
                ("staging_failed_reason", models.CharField(blank=True, max_length=255, null=True)),
                ("staging_failed_description", models.TextField(blank=True, null=True)),
                ("version", models.CharField(blank=True, default="", max_length=36)),
                ("diego", models.BooleanField(blank=True, null=True)),
                ("ports", models.JSONField(blank=True, null=True)),
                ("memory", models.IntegerField(blank=True, null=True)),
                ("disk_quota", models.IntegerField(blank=True, null=True)),
                ("instances", models.IntegerField(default=1)),
                ("file_descriptors", models.IntegerField(blank=True, null=True)),
                ("enable_ssh", models.BooleanField(blank=True, null=True)),
                (
                    "health_check_type",
                    models.CharField(
                        choices=[("port", "port"), ("none", "none"), ("process", "process")],
                        default="port",
                        max_length=20,
                    ),
                ),
                ("health_check_timeout", models.IntegerField(blank=True, null=True)),
                ("command", models.TextField(blank=True, null=True)),
                ("docker_image", models.CharField(blank=True, max_length=512, null=True)),
                ("droplet_hash", models.CharField(blank=True, max_length=255, null=True)),
                ("buildpack", models.TextField(blank=True, null=True)),
                ("detected_buildpack", models.TextField(blank=True, null=True)),
                ("detected_buildpack_guid", models.CharField(blank=True, max_length=36, null=True)),
                ("detected_buildpack_name", models.CharField(blank=True, max_length=255, null=True)),
                ("production", models.BooleanField(default=False)),
                ("metadata", models.JSONField(blank=True, null=True)),
                ("environment_json", models.JSONField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "admin_buildpack",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="processes",
                        to="process_runtime.buildpack",
                    ),
                ),
                (
                    "app",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="processes",
                        to="process_runtime.application",
                    ),
                ),
                (
                    "space",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="processes",
                        to="process_runtime.space",
                    ),
                ),
                (
                    "stack",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="processes",
                        to="process_runtime.stack",
                    ),
                ),
            ],
            options={
                "ordering": ["id"],
            },
        ),
        migrations.CreateModel(
            name="RouteMapping",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("guid", models.CharField(default=process_runtime.models._guid, max_length=36, unique=True)),
                ("bound_port", models.IntegerField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "process",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="route_mappings",
                        to="process_runtime.process",
                    ),
                ),
                (
                    "route",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="route_mappings",
                        to="process_runtime.route",
                    ),
                ),
            ],
            options={
                "ordering": ["id"],
            },
        ),
        migrations.CreateModel(
            name="Droplet",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("guid", models.CharField(default=process_runtime.models._guid, max_length=36, unique=True)),
                ("droplet_hash", models.CharField(db_index=True, max_length=255)),
                ("execution_metadata", models.TextField(blank=True, default="")),
                ("detected_start_command", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "process",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="droplets",
                        to="process_runtime.process",
                    ),
                ),
            ],
            options={
                "ordering": ["id"],
            },
        ),
        migrations.AddField(
            model_name="application",
            name="droplet",
            field=models.ForeignKey(
                blank=True,
                null=True,
                on_delete=django.db.models.deletion.SET_NULL,
                related_name="+",
                to="process_runtime.droplet",
            ),
        ),
        migrations.CreateModel(
            name="ServiceBinding",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("guid", models.CharField(default=process_runtime.models._guid, max_length=36, unique=True)),
                ("service_instance_name", models.CharField(max_length=255)),
                ("credentials", models.JSONField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "process",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="service_bindings",
                        to="process_runtime.process",
                    ),
                ),
            ],
        ),
        migrations.CreateModel(
            name="ProcessUsageEvent",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("guid", models.CharField(default=process_runtime.models._guid, max_length=36, unique=True)),
                ("state", models.CharField(max_length=40)),
                ("process_guid", models.CharField(db_index=True, max_length=36)),
                ("process_name", models.CharField(blank=True, max_length=255)),
                ("process_type", models.CharField(blank=True, max_length=120)),
                ("space_guid", models.CharField(blank=True, max_length=36)),
                ("space_name", models.CharField(blank=True, max_length=255)),
                ("org_guid", models.CharField(blank=True, max_length=36)),
                ("instance_count", models.IntegerField(default=0)),
                ("memory_in_mb_per_instance", models.IntegerField(default=0)),
                ("package_state", models.CharField(blank=True, max_length=20)),
                ("buildpack_guid", models.CharField(blank=True, max_length=36, null=True)),
                ("buildpack_name", models.TextField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "ordering": ["id"],
            },
        ),
        migrations.CreateModel(
            name="ProcessAuditEvent",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("guid", models.CharField(default=process_runtime.models._guid, max_length=36, unique=True)),
                ("type", models.CharField(max_length=120)),
                ("actor_guid", models.CharField(blank=True, max_length=255)),
                ("actor_email", models.CharField(blank=True, max_length=255)),
                ("actee_guid", models.CharField(db_index=True, max_length=36)),
                ("actee_name", models.CharField(blank=True, max_length=255)),
                ("space_guid", models.CharField(blank=True, max_length=36)),
                ("organization_guid", models.CharField(blank=True, max_length=36)),
                ("metadata_json", models.JSONField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "ordering": ["id"],
            },
        ),
    ]
