from django.contrib import admin

from .models import Chunk, IngestionJob, RowError, Upload, UploadRow


class ChunkInline(admin.TabularInline):
    model = Chunk
    extra = 0
    can_delete = False
    fields = (
        "chunk_index",
        "row_start",
        "row_end",
        "status",
        "attempt_count",
        "processed_rows",
        "succeeded_rows",
        "failed_rows",
        "locked_by",
        "last_error",
    )
    readonly_fields = fields


@admin.register(Upload)
class UploadAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "original_filename",
        "status",
        "size_bytes",
        "total_rows",
        "processed_rows",
        "failed_rows",
        "created_at",
    )
    list_filter = ("status", "created_at")
    search_fields = ("original_filename", "content_sha256")
    exclude = ("raw_bytes",)
    readonly_fields = ("token", "content_sha256", "headers", "last_error")
    inlines = [ChunkInline]


@admin.register(IngestionJob)
class IngestionJobAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "upload",
        "status",
        "attempt_count",
        "next_run_at",
        "locked_by",
        "heartbeat_at",
    )
    list_filter = ("status",)
    search_fields = ("upload__original_filename", "locked_by")


@admin.register(Chunk)
class ChunkAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "upload",
        "chunk_index",
        "row_start",
        "row_end",
        "status",
        "attempt_count",
        "locked_by",
    )
    list_filter = ("status",)
    search_fields = ("upload__original_filename", "locked_by")


@admin.register(UploadRow)
class UploadRowAdmin(admin.ModelAdmin):
    list_display = ("upload", "row_number", "validation_status", "error_count")
    list_filter = ("validation_status",)


@admin.register(RowError)
class RowErrorAdmin(admin.ModelAdmin):
    list_display = ("upload", "row_number", "field_name", "code", "severity")
    list_filter = ("severity", "code")
    search_fields = ("code", "field_name", "message")
