"""Tests for sanitized EXIF extraction."""

from datetime import datetime, timezone

import pytest
from PIL import ExifTags, Image
from PIL.TiffImagePlugin import IFDRational

from photo_pipeline.core.exif import (
    FLASH_MAP,
    METERING_MODE_MAP,
    extract_exif_data,
    format_date_taken,
    format_shutter_speed,
    map_flash,
    map_metering_mode,
    map_white_balance,
)
from photo_pipeline.core.models import ExifData
from photo_pipeline.testing import ExifFixture, create_test_image


@pytest.fixture
def write_image(tmp_path):
    def _write(data: bytes, name: str = "original.jpg") -> str:
        path = tmp_path / name
        path.write_bytes(data)
        return str(path)

    return _write


class TestFormatShutterSpeed:
    @pytest.mark.parametrize(
        "value,expected",
        [
            (1 / 250, "1/250"),
            (0.004, "1/250"),
            (1 / 3, "1/3"),
            (0.5, "1/2"),
            (1, "1s"),
            (2, "2s"),
            (2.5, "2.5s"),
            (30, "30s"),
        ],
    )
    def test_formats(self, value, expected):
        assert format_shutter_speed(value) == expected

    @pytest.mark.parametrize("value", [None, 0, -1])
    def test_missing_or_invalid(self, value):
        assert format_shutter_speed(value) is None


class TestLookupTables:
    def test_white_balance(self):
        assert map_white_balance(0) == "Auto"
        assert map_white_balance(1) == "Manual"
        assert map_white_balance(2) is None
        assert map_white_balance(None) is None

    def test_metering_mode_table_is_complete(self):
        assert len(METERING_MODE_MAP) == 7
        assert map_metering_mode(0) == "Unknown"
        assert map_metering_mode(2) == "Center-weighted average"
        assert map_metering_mode(5) == "Pattern"
        assert map_metering_mode(6) == "Partial"

    def test_metering_mode_unknown_value(self):
        assert map_metering_mode(255) is None
        assert map_metering_mode(None) is None

    def test_flash_table(self):
        assert len(FLASH_MAP) == 23
        assert map_flash(0x00) == "Did not fire"
        assert map_flash(0x10) == "Did not fire, compulsory suppression"
        assert map_flash(0x19) == "Fired, auto"
        assert map_flash(0x20) == "No flash function"
        assert map_flash(0x5F) == "Fired, auto, red-eye, return detected"

    @pytest.mark.parametrize("value,expected", [(0x03, "Fired"), (0x02, "Did not fire"), (0x61, "Fired")])
    def test_flash_unmapped_falls_back_to_fired_bit(self, value, expected):
        assert value not in FLASH_MAP
        assert map_flash(value) == expected

    def test_flash_none(self):
        assert map_flash(None) is None


class TestFormatDateTaken:
    def test_datetime_to_iso_utc(self):
        value = datetime(2024, 3, 15, 14, 30, 0, tzinfo=timezone.utc)
        assert format_date_taken(value) == "2024-03-15T14:30:00.000Z"

    def test_naive_datetime_is_treated_as_utc(self):
        assert format_date_taken(datetime(2023, 1, 2, 3, 4, 5)) == "2023-01-02T03:04:05.000Z"

    def test_string_passes_through(self):
        assert format_date_taken("2024:03:15 14:30:00") == "2024:03:15 14:30:00"

    def test_none(self):
        assert format_date_taken(None) is None


class TestExtractExifData:
    def test_make_and_model(self, write_image):
        path = write_image(create_test_image(8, 6, exif=ExifFixture(make="Canon", model="EOS R5")))

        exif = extract_exif_data(path)

        assert isinstance(exif, ExifData)
        assert exif.camera_make == "Canon"
        assert exif.camera_model == "EOS R5"
        assert exif.lens is None
        assert exif.iso is None
        assert exif.flash is None

    def test_exif_ifd_fields(self, write_image):
        fixture = ExifFixture(
            make="FUJIFILM",
            model="X-T5",
            exif_ifd={
                ExifTags.Base.LensModel: "XF23mmF1.4 R LM WR",
                ExifTags.Base.FocalLength: IFDRational(23, 1),
                ExifTags.Base.FNumber: IFDRational(28, 10),
                ExifTags.Base.ExposureTime: IFDRational(1, 250),
                ExifTags.Base.ISOSpeedRatings: 400,
                ExifTags.Base.DateTimeOriginal: "2024:03:15 14:30:00",
                ExifTags.Base.WhiteBalance: 1,
                ExifTags.Base.MeteringMode: 5,
                ExifTags.Base.Flash: 0x10,
            },
        )
        path = write_image(create_test_image(8, 6, exif=fixture))

        exif = extract_exif_data(path)

        assert exif.camera_make == "FUJIFILM"
        assert exif.lens == "XF23mmF1.4 R LM WR"
        assert exif.focal_length == 23.0
        assert exif.aperture == 2.8
        assert exif.shutter_speed == "1/250"
        assert exif.iso == 400
        assert exif.date_taken == "2024-03-15T14:30:00.000Z"
        assert exif.white_balance == "Manual"
        assert exif.metering_mode == "Pattern"
        assert exif.flash == "Did not fire, compulsory suppression"

    def test_private_tags_in_source_are_dropped(self, write_image):
        fixture = ExifFixture(
            make="Canon",
            software="PhotoEditor 3.1",
            exif_ifd={ExifTags.Base.BodySerialNumber: "SN-0042-7781"},
            gps={ExifTags.GPS.GPSLatitudeRef: "N", ExifTags.GPS.GPSMapDatum: "TOKYO-DATUM"},
        )
        path = write_image(create_test_image(8, 6, exif=fixture))
        with Image.open(path) as img:
            source = img.getexif()
            assert source[ExifTags.Base.Software] == "PhotoEditor 3.1"
            assert source.get_ifd(ExifTags.IFD.GPSInfo)
            assert source.get_ifd(ExifTags.IFD.Exif)[ExifTags.Base.BodySerialNumber] == "SN-0042-7781"

        exif = extract_exif_data(path)
        payload = exif.model_dump(by_alias=True)

        assert exif.camera_make == "Canon"
        assert set(payload) == {
            "cameraMake", "cameraModel", "lens", "focalLength", "aperture",
            "shutterSpeed", "iso", "dateTaken", "whiteBalance", "meteringMode", "flash",
        }
        values = " ".join(str(v) for v in payload.values())
        for secret in ("PhotoEditor", "SN-0042-7781", "TOKYO-DATUM"):
            assert secret not in values

    def test_no_exif_block(self, write_image):
        path = write_image(create_test_image(8, 6))
        assert extract_exif_data(path) is None

    def test_png_without_exif(self, write_image):
        path = write_image(create_test_image(8, 6, format="PNG"), "original.png")
        assert extract_exif_data(path) is None

    def test_missing_file(self, tmp_path):
        assert extract_exif_data(str(tmp_path / "nope.jpg")) is None

    def test_corrupt_file(self, write_image):
        path = write_image(b"\xff\xd8\xff\xe1 definitely not a jpeg")
        assert extract_exif_data(path) is None
