"""End-to-end flows through the Flask application with signed requests."""

import hashlib
import json
import xml.etree.ElementTree as ET

import pytest

from conftest import ReferenceSigner
from s3gate.s3.responses import S3_NAMESPACE


NS = {"s3": S3_NAMESPACE}
HELLO_ETAG = "5d41402abc4b2a76b9719d911017c592"


def xml_body(response):
    return ET.fromstring(response.data)


def error_code(response):
    return ET.fromstring(response.data).findtext("Code")


@pytest.fixture
def bucket(s3):
    assert s3.put("/bkt").status_code == 201
    return "bkt"


class TestBuckets:

    def test_create_bucket_twice(self, s3):
        assert s3.put("/bkt").status_code == 201
        assert s3.put("/bkt").status_code == 200

    def test_invalid_bucket_name(self, s3):
        response = s3.put("/Not_Valid")
        assert response.status_code == 400
        assert error_code(response) == "InvalidBucketName"

    def test_list_buckets_xml(self, s3, bucket):
        response = s3.get("/")
        assert response.status_code == 200
        root = xml_body(response)
        names = [n.text for n in root.findall("s3:Buckets/s3:Bucket/s3:Name", NS)]
        assert names == ["bkt"]
        assert root.findtext("s3:Owner/s3:ID", namespaces=NS) == "owner-0001"

    def test_list_buckets_json(self, s3, bucket):
        response = s3.get("/", query="format=json")
        assert response.status_code == 200
        assert json.loads(response.data) == {"buckets": ["bkt"]}

    def test_head_bucket(self, s3, bucket):
        assert s3.head("/bkt").status_code == 200
        assert s3.head("/missing").status_code == 404

    def test_location(self, s3, bucket):
        response = s3.get("/bkt", query="location")
        assert response.status_code == 200
        assert xml_body(response).text == "us-east-1"

    def test_delete_bucket(self, s3, bucket):
        s3.put("/bkt/obj.txt", body=b"x")
        response = s3.delete("/bkt")
        assert response.status_code == 409
        assert error_code(response) == "BucketNotEmpty"

        assert s3.delete("/bkt/obj.txt").status_code == 204
        assert s3.delete("/bkt").status_code == 204
        assert s3.head("/bkt").status_code == 404


class TestObjects:

    def test_put_get_delete(self, s3, bucket):
        response = s3.put("/bkt/obj.txt", body=b"hello")
        assert response.status_code == 200
        assert response.headers["ETag"] == HELLO_ETAG

        response = s3.get("/bkt/obj.txt")
        assert response.status_code == 200
        assert response.data == b"hello"
        assert response.headers["ETag"] == HELLO_ETAG
        assert response.headers["Content-Type"] == "text/plain; charset=utf-8"
        assert "Last-Modified" in response.headers

        assert s3.delete("/bkt/obj.txt").status_code == 204

        response = s3.get("/bkt/obj.txt")
        assert response.status_code == 404
        assert error_code(response) == "NoSuchKey"

    def test_head_object(self, s3, bucket):
        s3.put("/bkt/obj.txt", body=b"hello")
        response = s3.head("/bkt/obj.txt")
        assert response.status_code == 200
        assert response.headers["Content-Length"] == "5"
        assert response.headers["ETag"] == HELLO_ETAG
        assert response.data == b""

    def test_head_missing_object(self, s3, bucket):
        assert s3.head("/bkt/nope.txt").status_code == 404

    def test_put_into_missing_bucket(self, s3):
        response = s3.put("/nope/obj.txt", body=b"x")
        assert response.status_code == 404
        assert error_code(response) == "NoSuchBucket"

    def test_nested_key_creates_directories(self, s3, bucket, config):
        s3.put("/bkt/a/b/c.txt", body=b"deep")
        assert s3.get("/bkt/a/b/c.txt").data == b"deep"

    def test_directory_marker(self, s3, bucket):
        assert s3.put("/bkt/folder/").status_code == 201
        assert s3.put("/bkt/folder/").status_code == 200
        assert s3.head("/bkt/folder/").status_code == 200

        s3.put("/bkt/file", body=b"x")
        response = s3.put("/bkt/file/")
        assert response.status_code == 409
        assert error_code(response) == "ExistingObjectIsFile"

    def test_delete_missing_key(self, s3, bucket):
        response = s3.delete("/bkt/nope.txt")
        assert response.status_code == 404
        assert error_code(response) == "NoSuchKey"

    def test_delete_non_empty_prefix(self, s3, bucket):
        s3.put("/bkt/dir/obj.txt", body=b"x")
        response = s3.delete("/bkt/dir/")
        assert response.status_code == 409
        assert error_code(response) == "NotEmpty"

    def test_aws_chunked_upload(self, s3, bucket):
        signature = b";chunk-signature=" + b"0" * 64
        body = (
            b"5" + signature + b"\r\nhello\r\n"
            + b"6" + signature + b"\r\n world\r\n"
            + b"0" + signature + b"\r\n\r\n"
        )
        response = s3.put(
            "/bkt/streamed.txt",
            body=body,
            headers={"Content-Encoding": "aws-chunked", "X-Amz-Decoded-Content-Length": "11"},
            payload_hash="STREAMING-AWS4-HMAC-SHA256-PAYLOAD",
        )
        assert response.status_code == 200
        assert response.headers["ETag"] == hashlib.md5(b"hello world").hexdigest()
        assert s3.get("/bkt/streamed.txt").data == b"hello world"


class TestListing:

    @pytest.fixture
    def populated(self, s3, bucket):
        s3.put("/bkt/a.txt", body=b"a")
        s3.put("/bkt/b.txt", body=b"b")
        s3.put("/bkt/c/d.txt", body=b"d")

    def keys_and_prefixes(self, response):
        root = xml_body(response)
        keys = [n.text for n in root.findall("s3:Contents/s3:Key", NS)]
        prefixes = [n.text for n in root.findall("s3:CommonPrefixes/s3:Prefix", NS)]
        return keys, prefixes

    def test_bucket_listing(self, s3, populated):
        response = s3.get("/bkt")
        assert response.status_code == 200
        assert self.keys_and_prefixes(response) == (["a.txt", "b.txt"], ["c/"])

    def test_contents_carry_owner_and_storage_class(self, s3, populated):
        root = xml_body(s3.get("/bkt"))
        contents = root.find("s3:Contents", NS)
        assert contents.findtext("s3:StorageClass", namespaces=NS) == "STANDARD"
        assert contents.findtext("s3:Owner/s3:DisplayName", namespaces=NS) == "tester@example.com"
        assert contents.findtext("s3:ETag", namespaces=NS) == hashlib.md5(b"a").hexdigest()

    def test_delimited_prefix_listing(self, s3, populated):
        response = s3.get("/bkt", query="delimiter=%2F&prefix=c%2F")
        assert self.keys_and_prefixes(response) == (["c/d.txt"], [])
        assert xml_body(response).findtext("s3:Prefix", namespaces=NS) == "c/"

    def test_directory_key_listing(self, s3, populated):
        response = s3.get("/bkt/c/")
        assert self.keys_and_prefixes(response) == (["c/d.txt"], [])

    def test_list_query_without_delimiter_is_recursive(self, s3, populated):
        response = s3.get("/bkt", query="list-type=2&prefix=")
        assert self.keys_and_prefixes(response) == (["a.txt", "b.txt", "c/d.txt"], [])

    def test_partial_prefix(self, s3, populated):
        response = s3.get("/bkt", query="delimiter=%2F&prefix=a")
        assert self.keys_and_prefixes(response) == (["a.txt"], [])

    def test_missing_bucket(self, s3):
        response = s3.get("/nope")
        assert response.status_code == 404
        assert error_code(response) == "NoSuchBucket"


class TestMultipart:

    def test_full_flow(self, s3, bucket):
        response = s3.post("/bkt/big.bin", query="uploads")
        assert response.status_code == 200
        upload_id = xml_body(response).findtext("s3:UploadId", namespaces=NS)
        assert upload_id.isdigit()

        etags = {}
        for number, data in ((1, b"part1"), (2, b"part2")):
            response = s3.put(
                "/bkt/big.bin", query=f"partNumber={number}&uploadId={upload_id}", body=data
            )
            assert response.status_code == 200
            etags[number] = response.headers["ETag"]

        response = s3.get("/bkt/big.bin", query=f"uploadId={upload_id}")
        assert response.status_code == 200
        part_numbers = [
            n.text for n in xml_body(response).findall("s3:Part/s3:PartNumber", NS)
        ]
        assert part_numbers == ["1", "2"]

        manifest = (
            f'<CompleteMultipartUpload xmlns="{S3_NAMESPACE}">'
            f'<Part><PartNumber>2</PartNumber><ETag>"{etags[2]}"</ETag></Part>'
            f'<Part><PartNumber>1</PartNumber><ETag>"{etags[1]}"</ETag></Part>'
            "</CompleteMultipartUpload>"
        ).encode()
        response = s3.post("/bkt/big.bin", query=f"uploadId={upload_id}", body=manifest)
        assert response.status_code == 200
        assert xml_body(response).findtext("s3:ETag", namespaces=NS) == (
            hashlib.md5(b"part2part1").hexdigest()
        )

        assert s3.get("/bkt/big.bin").data == b"part2part1"

    def test_mismatched_part_etag(self, s3, bucket):
        upload_id = xml_body(s3.post("/bkt/big.bin", query="uploads")).findtext(
            "s3:UploadId", namespaces=NS
        )
        s3.put("/bkt/big.bin", query=f"partNumber=1&uploadId={upload_id}", body=b"part1")

        manifest = (
            b"<CompleteMultipartUpload><Part><PartNumber>1</PartNumber>"
            b"<ETag>00000000000000000000000000000000</ETag></Part></CompleteMultipartUpload>"
        )
        response = s3.post("/bkt/big.bin", query=f"uploadId={upload_id}", body=manifest)
        assert response.status_code == 409
        assert error_code(response) == "SignatureDoesNotMatch"

    def test_abort(self, s3, bucket):
        upload_id = xml_body(s3.post("/bkt/big.bin", query="uploads")).findtext(
            "s3:UploadId", namespaces=NS
        )
        s3.put("/bkt/big.bin", query=f"partNumber=1&uploadId={upload_id}", body=b"part1")

        assert s3.delete("/bkt/big.bin", query=f"uploadId={upload_id}").status_code == 204
        response = s3.get("/bkt/big.bin", query=f"uploadId={upload_id}")
        assert response.status_code == 404
        assert error_code(response) == "NoSuchUpload"

    def test_malformed_manifest(self, s3, bucket):
        upload_id = xml_body(s3.post("/bkt/big.bin", query="uploads")).findtext(
            "s3:UploadId", namespaces=NS
        )
        response = s3.post("/bkt/big.bin", query=f"uploadId={upload_id}", body=b"<not-xml")
        assert response.status_code == 400
        assert error_code(response) == "MalformedXML"

    def test_unknown_post(self, s3, bucket):
        response = s3.post("/bkt/big.bin", query="restore")
        assert response.status_code == 400
        assert error_code(response) == "InvalidArgument"

    def test_non_numeric_upload_id(self, s3, bucket):
        response = s3.post("/bkt/big.bin", query="uploadId=abc")
        assert response.status_code == 400
        assert error_code(response) == "InvalidArgument"


class TestAuthentication:

    def test_unsigned_request_is_denied(self, client):
        response = client.get("/")
        assert response.status_code == 403
        root = ET.fromstring(response.data)
        assert root.findtext("Code") == "AccessDenied"
        assert root.findtext("RequestId") == response.headers["x-amz-request-id"]

    def test_bad_signature_is_denied_before_storage(self, s3, signer, client, config):
        headers = signer.sign("PUT", "/bkt")
        headers["Authorization"] = headers["Authorization"][:-4] + "zzzz"
        response = client.put("/bkt", headers=headers)
        assert response.status_code == 403
        assert s3.get("/", query="format=json").get_json() == {"buckets": []}

    def test_wrong_secret_is_denied(self, client):
        intruder = ReferenceSigner(secret_key="not-the-secret")
        response = client.get("/", headers=intruder.sign("GET", "/"))
        assert response.status_code == 403

    def test_every_response_has_request_id(self, s3):
        assert s3.get("/").headers["x-amz-request-id"]

    def test_json_errors(self, client):
        response = client.get("/", query_string="format=json")
        assert response.status_code == 403
        assert response.get_json()["error"]["code"] == "AccessDenied"
