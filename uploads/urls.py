from django.urls import path

from . import views

urlpatterns = [
    path("", views.upload_payment_file, name="payment-upload-create"),
    path(
        "<uuid:upload_id>/",
        views.delete_upload,
        name="payment-upload-delete",
    ),
    path(
        "<uuid:upload_id>/status/",
        views.get_upload_status,
        name="payment-upload-status",
    ),
    path(
        "<uuid:upload_id>/errors/",
        views.list_upload_errors,
        name="payment-upload-errors",
    ),
    path(
        "<uuid:upload_id>/rows/",
        views.list_upload_rows,
        name="payment-upload-rows",
    ),
    path(
        "<uuid:upload_id>/errors.csv",
        views.export_errors_csv,
        name="payment-upload-errors-export",
    ),
]
