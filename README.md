# stratus

Stratus is a container image registry whose images live in an S3-compatible
bucket. It has two halves:

- a small Flask application (`stratus.server.create_app`) that answers the
  read side of the OCI distribution API, redirecting blob downloads to
  presigned object-store URLs, started by the `stratus` command;
- a pusher (`stratus.pusher.push_oci_layout`) that uploads an OCI image
  layout directory into the bucket and merges its tag into the repository's
  `index.json`.

## Bucket layout

For a repository `namespace/repo` the objects are stored as

```
namespace/repo/index.json
namespace/repo/oci-layout
namespace/repo/blobs/sha256/<hex digest>
```

A repository name without a `/` is placed under `library/`, so `nginx`
becomes `library/nginx` (`stratus.registry.normalize_repo`; the keys come
from `blob_path`, `index_path` and `oci_layout_path` in the same module).

## Configuration

`stratus.config.load()` builds a `Config` from the environment (or from a
mapping passed to it):

| Variable                          | Default                | Meaning                                      |
|-----------------------------------|------------------------|----------------------------------------------|
| `PORT`                            | `3000`                 | Port the server listens on                   |
| `S3_BUCKET_NAME`                  | `zeabur-oci-registry`  | Bucket holding the images                    |
| `S3_ENDPOINT`                     | (required)             | Host, optionally with `:port`, of the service |
| `S3_ACCESS_KEY_ID`                | (required)             | Access key id                                |
| `S3_SECRET_ACCESS_KEY`            | (required)             | Secret access key                            |
| `S3_USE_SSL`                      | `false`                | `true` to talk HTTPS to the endpoint         |
| `S3_REGION`                       | `us-east-1`            | Signing region                               |
| `S3_PATH_STYLE`                   | `false`                | `true` for path-style bucket addressing      |
| `S3_MULTIPART_UPLOAD_CONCURRENCY` | `4`                    | Stored on `S3Storage`; see below             |

Boolean settings are on only for the exact value `true`. A concurrency value
that is not a whole number fitting in 32 bits falls back to `4`.

`stratus.s3.storage_from_config(config)` raises `MissingConfigError` when the
endpoint or either credential is empty, and `ValueError` when the endpoint
contains a `/`.

## Running the registry

```
stratus
```

The command takes no options. It refuses to start (exit status 1) when the
storage settings are missing or invalid, and otherwise serves on
`0.0.0.0:$PORT`, logging each request as a JSON line on standard output:

- `GET|HEAD /v2` and `/v2/` — answers `{"success": true}`;
- `GET|HEAD /v2/<namespace>/<repository>/blobs/sha256:<hex>` — `HEAD`
  returns `Content-Length`, `Docker-Content-Digest` and `ETag`; `GET`
  redirects (302) to a presigned URL valid for 30 minutes. Missing or empty
  blobs are reported as `BLOB_UNKNOWN`; digests not starting with `sha256:`
  as `DIGEST_INVALID`;
- `GET|HEAD /v2/<namespace>/<repository>/manifests/<tag or digest>` —
  looks the reference up in the repository's `index.json` (by the
  `org.opencontainers.image.ref.name` annotation or by digest) and streams
  the manifest as `application/vnd.oci.image.manifest.v1+json`. A matching
  `If-None-Match` gives 304. A storage error whose text contains `10058` is
  answered with 429 `TOOMANYREQUESTS`.

Other methods on these paths get 405. Errors use the OCI error body built by
`stratus.oci_errors.error_body`, for example
`{"errors": [{"code": "BLOB_UNKNOWN", "message": "blob unknown to registry"}]}`,
with the status from `stratus.oci_errors.http_status`.

## Pushing an image

`push_oci_layout` takes a directory in OCI image layout form (with
`index.json`, `oci-layout` and `blobs/sha256/`), uploads the blobs the bucket
does not already hold, and only then writes the merged index and the
`oci-layout` file, so the index never names a blob that is not there yet.

```python
import os
import sys

from stratus.config import load
from stratus.pusher import push_oci_layout
from stratus.s3 import storage_from_config

config = load(os.environ)
storage = storage_from_config(config)

push_oci_layout(
    storage,
    config.bucket_name,
    "/path/to/oci-layout-dir",
    "library/ubuntu",
    "22.04",
    log_output=sys.stderr,
    blob_upload_concurrency=4,
)
```

The first manifest of the local index is tagged with the given tag. When the
remote index already has a manifest under that tag, the new one replaces it;
other tags are kept (`stratus.manifest_updater.OCIManifestUpdater.merge_index`).
If the remote index cannot be read for a reason other than its absence, a
warning is logged and the local index is written as is.

Each upload is tried up to three times, pausing one and then two seconds
between attempts (`stratus.uploader.upload_with_retry`); blobs are uploaded by
a thread pool (`upload_tasks_concurrently`). Failures raise
`stratus.pusher.PushError` or `stratus.uploader.UploadError`. Progress lines
go to `log_output`, standard error by default.

## Using your own storage

The server needs a `stratus.storage.ReadStorage` (`stat_object`,
`get_object`, `presign_get_object`); the pusher needs a
`stratus.storage.Storage`, which adds `put_object`. Missing keys must raise
`stratus.storage.ObjectNotFoundError`. `stratus.s3.S3Storage` implements
`Storage` for S3-compatible services with Signature Version 4 signing; any
other subclass can be passed to `create_app` or `push_oci_layout` instead.

## What it does not do

- The server is read-only: it has no upload, tag-listing or delete endpoints,
  and no authentication. Images go in only through `push_oci_layout`.
- There is no command for pushing, and nothing here fetches images from other
  registries; the OCI layout directory must already be on disk.
- `S3Storage.put_object` sends each object in a single `PUT` request. The
  multipart concurrency setting is kept on the storage object but no
  multipart uploads are made.