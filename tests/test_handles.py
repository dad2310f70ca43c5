"""
Tests for content handles and the handle factory.

TestBindingHandle        - content slot, casting, pinned format, buffers
TestBindingConverters    - marshaller/unmarshaller reuse and reset
TestBindingStreams       - receive_content closing, error wrapping, logging
TestBindingHandleFactory - registry, distinct handles, shared context
TestRawHandles           - BytesHandle, StringHandle, InputStreamHandle
TestElementHandle        - parsing, path evaluation
"""

from __future__ import annotations

import io
import logging
import threading
import xml.etree.ElementTree as ET
import pytest
from pydantic import BaseModel, Field

from docio._bind import ENCODING, FORMATTED_OUTPUT, BindingContext, BindingError
from docio.errors import ContentIOError, IllegalStateError, InvalidArgumentError, TypeMismatchError
from docio.format import Format
from docio.handles import (
    BindingHandle, BytesHandle, ContentHandleFactory, ElementHandle,
    InputStreamHandle, StringHandle, xml_attribute,
)


# ---------------------------------------------------------------------------
# Bound types
# ---------------------------------------------------------------------------

class Product(BaseModel):
    sku: str = xml_attribute()
    name: str = ""
    tags: list[str] = Field(default_factory=list)


class Invoice(BaseModel):
    number: int
    total: float = 0.0


class SpecialProduct(Product):
    discount: float = 0.0


class Node(BaseModel):
    name: str = ""
    child: Node | None = None


class _FailingCloseStream(io.BytesIO):
    """A stream whose close() fails after closing."""

    def close(self) -> None:
        if self.closed:
            return
        super().close()
        raise OSError("close failed")


class _BrokenSink(io.BytesIO):
    def write(self, data) -> int:
        raise OSError("disk full")


class _BrokenSource(io.BytesIO):
    def read(self, *args) -> bytes:
        raise OSError("device gone")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def factory():
    return BindingHandle.new_factory(Product, Invoice)


@pytest.fixture
def handle(factory):
    return factory.new_handle(Product)


@pytest.fixture
def nodes():
    return BindingHandle.new_factory(Node)


@pytest.fixture
def product():
    return Product(sku="W-1", name="Widget", tags=["a", "b"])


# ---------------------------------------------------------------------------
# TestBindingHandle
# ---------------------------------------------------------------------------

class TestBindingHandle:

    def test_requires_context(self):
        with pytest.raises(InvalidArgumentError, match="None binding context"):
            BindingHandle(None)

    def test_rejects_non_context(self):
        with pytest.raises(InvalidArgumentError, match="Not a binding context"):
            BindingHandle(object())

    def test_empty_content(self, handle):
        assert handle.get() is None
        assert handle.get(Product) is None
        assert handle.to_buffer() is None
        assert str(handle) == ""

    def test_with_content_is_fluent(self, handle, product):
        assert handle.with_content(product) is handle
        assert handle.get() is product

    def test_set_replaces_content(self, handle, product):
        handle.set(product)
        other = Product(sku="X")
        handle.set(other)
        assert handle.get() is other

    def test_get_as_returns_same_reference(self, handle, product):
        handle.set(product)
        assert handle.get(Product) is product
        assert handle.get(object) is product

    def test_get_as_subclass_content(self, handle):
        special = SpecialProduct(sku="S", discount=0.5)
        handle.set(special)
        assert handle.get(Product) is special

    def test_get_as_mismatch(self, handle, product):
        handle.set(product)
        with pytest.raises(TypeMismatchError, match="Cannot cast Product to Invoice"):
            handle.get(Invoice)
        with pytest.raises(TypeError):
            handle.get(SpecialProduct)

    def test_get_as_not_a_class(self, handle, product):
        handle.set(product)
        with pytest.raises(InvalidArgumentError, match="Cannot cast content"):
            handle.get("Product")

    def test_format_pinned_to_xml(self, handle):
        assert handle.format is Format.XML
        handle.set_format(Format.XML)
        assert handle.format is Format.XML

    @pytest.mark.parametrize("fmt", [Format.JSON, Format.TEXT, Format.BINARY, Format.UNKNOWN])
    def test_set_other_format_fails(self, handle, fmt):
        with pytest.raises(InvalidArgumentError, match="XML format only"):
            handle.set_format(fmt)
        assert handle.format is Format.XML

    def test_with_mimetype(self, handle):
        assert handle.with_mimetype("application/vnd.product+xml") is handle
        assert handle.mimetype == "application/vnd.product+xml"
        assert handle.format is Format.XML

    def test_resendable(self, handle):
        assert handle.resendable is True

    def test_buffer_round_trip(self, factory, handle, product):
        payload = handle.with_content(product).to_buffer()
        other = factory.new_handle(Product)
        other.from_buffer(payload)
        assert other.get() == product
        assert other.get() is not product

    def test_to_buffer_is_a_snapshot(self, handle, product):
        payload = handle.with_content(product).to_buffer()
        product.name = "Changed"
        product.tags.append("c")
        assert b"Changed" not in payload
        assert b"<tags>c</tags>" not in payload
        assert handle.to_buffer() != payload

    @pytest.mark.parametrize("buffer", [None, b""])
    def test_from_empty_buffer_clears(self, handle, product, buffer):
        handle.set(product)
        handle.from_buffer(buffer)
        assert handle.get() is None

    def test_payload_is_indented_utf8(self, handle):
        payload = handle.with_content(Product(sku="C", name="Café")).to_buffer()
        assert payload.startswith(b"<?xml version='1.0' encoding='UTF-8'?>")
        assert "<name>Café</name>".encode("utf-8") in payload
        assert b"\n  <name>" in payload

    def test_str_is_decoded_payload(self, handle, product):
        handle.set(product)
        assert str(handle) == handle.to_buffer().decode("utf-8")

    def test_write_to_sink(self, handle, product):
        out = io.BytesIO()
        handle.with_content(product).write(out)
        assert out.getvalue() == handle.to_buffer()

    def test_send_content(self, handle, product):
        assert handle.with_content(product).send_content() is handle

    def test_send_content_without_content(self, handle):
        with pytest.raises(IllegalStateError, match="No object to write"):
            handle.send_content()

    def test_write_without_content(self, handle):
        with pytest.raises(IllegalStateError):
            handle.write(io.BytesIO())

    def test_receive_as_stream(self, handle):
        assert handle.receive_as() is not bytes


# ---------------------------------------------------------------------------
# TestBindingConverters
# ---------------------------------------------------------------------------

class TestBindingConverters:

    def test_marshaller_reuse(self, handle):
        first = handle.get_marshaller()
        assert handle.get_marshaller() is first
        assert handle.get_marshaller(reuse=True) is first
        fresh = handle.get_marshaller(reuse=False)
        assert fresh is not first
        assert handle.get_marshaller() is fresh

    def test_marshaller_configuration(self, handle):
        for marshaller in (handle.get_marshaller(), handle.get_marshaller(reuse=False)):
            assert marshaller.get_property(FORMATTED_OUTPUT) is True
            assert marshaller.get_property(ENCODING) == "UTF-8"

    def test_unmarshaller_reuse(self, handle):
        first = handle.get_unmarshaller()
        assert handle.get_unmarshaller() is first
        assert handle.get_unmarshaller(reuse=False) is not first

    def test_marshal_failure_wraps_and_resets(self, handle):
        first = handle.get_marshaller()
        handle.set(Product(sku="A", name="bell\x07"))
        with pytest.raises(ContentIOError) as excinfo:
            handle.to_buffer()
        assert isinstance(excinfo.value.__cause__, BindingError)
        assert handle.get_marshaller() is not first

    def test_sink_failure_wraps(self, handle, product):
        handle.set(product)
        with pytest.raises(ContentIOError) as excinfo:
            handle.write(_BrokenSink())
        assert isinstance(excinfo.value.__cause__, OSError)

    def test_unmarshal_failure_resets(self, handle):
        first = handle.get_unmarshaller()
        with pytest.raises(ContentIOError):
            handle.from_buffer(b"<invoice><number>1</number></invoice><junk")
        assert handle.get_unmarshaller() is not first

    def test_unregistered_content_fails_to_marshal(self, handle):
        handle.set(object())
        with pytest.raises(ContentIOError, match="Failed to marshal object"):
            handle.to_buffer()


# ---------------------------------------------------------------------------
# TestBindingStreams
# ---------------------------------------------------------------------------

class TestBindingStreams:

    def test_receive_closes_stream(self, handle, product):
        payload = BindingHandle(handle.context).with_content(product).to_buffer()
        stream = io.BytesIO(payload)
        handle.receive_content(stream)
        assert stream.closed
        assert handle.get() == product

    def test_receive_other_registered_root(self, handle):
        handle.from_buffer(b"<invoice><number>12</number><total>3.5</total></invoice>")
        assert handle.get() == Invoice(number=12, total=3.5)
        with pytest.raises(TypeMismatchError):
            handle.get(Product)

    def test_failure_wraps_and_closes(self, handle):
        stream = io.BytesIO(b"<unknown/>")
        with pytest.raises(ContentIOError) as excinfo:
            handle.receive_content(stream)
        assert stream.closed
        assert isinstance(excinfo.value.__cause__, BindingError)

    def test_failure_keeps_prior_content(self, handle, product):
        handle.set(product)
        with pytest.raises(ContentIOError):
            handle.from_buffer(b"<product")
        assert handle.get() is product

    def test_invalid_utf8(self, handle):
        with pytest.raises(ContentIOError) as excinfo:
            handle.from_buffer(b"<product sku='\xff\xfe'/>")
        assert isinstance(excinfo.value.__cause__, UnicodeDecodeError)

    def test_failure_is_logged(self, handle, caplog):
        with caplog.at_level(logging.ERROR, logger="docio.handles.binding"):
            with pytest.raises(ContentIOError):
                handle.from_buffer(b"not xml")
        assert "Failed to unmarshal object read from document" in caplog.text

    def test_close_error_suppressed_on_success(self, handle, product, caplog):
        payload = BindingHandle(handle.context).with_content(product).to_buffer()
        with caplog.at_level(logging.DEBUG, logger="docio.handles.binding"):
            handle.receive_content(_FailingCloseStream(payload))
        assert handle.get() == product
        assert "close failed" in caplog.text

    def test_close_error_does_not_mask_failure(self, handle):
        with pytest.raises(ContentIOError) as excinfo:
            handle.receive_content(_FailingCloseStream(b"<product"))
        assert isinstance(excinfo.value.__cause__, BindingError)


    def test_deep_nesting_wraps_and_resets(self, nodes, caplog):
        handle = nodes.new_handle(Node)
        first = handle.get_unmarshaller()
        depth = 5000
        payload = ("<node>" + "<child>" * depth + "</child>" * depth + "</node>").encode("utf-8")
        stream = io.BytesIO(payload)
        with caplog.at_level(logging.ERROR, logger="docio.handles.binding"):
            with pytest.raises(ContentIOError, match="maximum depth") as excinfo:
                handle.receive_content(stream)
        assert isinstance(excinfo.value.__cause__, BindingError)
        assert stream.closed
        assert handle.get_unmarshaller() is not first
        assert "Failed to unmarshal object read from document" in caplog.text

    def test_self_nesting_round_trip(self, nodes):
        node = Node(name="root", child=Node(name="mid", child=Node(name="leaf")))
        payload = nodes.new_handle(Node).with_content(node).to_buffer()
        other = nodes.new_handle(Node)
        other.from_buffer(payload)
        assert other.get() == node

    def test_deep_content_fails_to_write(self, nodes):
        node = Node(name="leaf")
        for i in range(5000):
            node = Node(name=str(i), child=node)
        handle = nodes.new_handle(Node).with_content(node)
        with pytest.raises(ContentIOError, match="maximum depth"):
            handle.to_buffer()

    def test_recursion_error_wraps(self, handle, product, monkeypatch):
        def overflow(*args, **kwargs):
            raise RecursionError("maximum recursion depth exceeded")

        monkeypatch.setattr(handle.get_unmarshaller(), "unmarshal", overflow)
        with pytest.raises(ContentIOError) as excinfo:
            handle.from_buffer(b"<product sku='A'/>")
        assert isinstance(excinfo.value.__cause__, RecursionError)

        handle.set(product)
        monkeypatch.setattr(handle.get_marshaller(), "marshal", overflow)
        with pytest.raises(ContentIOError) as excinfo:
            handle.to_buffer()
        assert isinstance(excinfo.value.__cause__, RecursionError)

    @pytest.mark.parametrize("name", ["bell\x07", "nul\x00", "form\x0cfeed"])
    def test_non_xml_characters_fail_to_write(self, handle, name):
        handle.set(Product(sku="A", name=name))
        with pytest.raises(ContentIOError, match="not allowed in XML"):
            handle.to_buffer()

    def test_carriage_returns_round_trip(self, factory, handle):
        payload = handle.with_content(Product(sku="A", name="a\r\nb\rc")).to_buffer()
        other = factory.new_handle(Product)
        other.from_buffer(payload)
        assert other.get().name == "a\r\nb\rc"


# ---------------------------------------------------------------------------
# TestBindingHandleFactory
# ---------------------------------------------------------------------------

class TestBindingHandleFactory:

    def test_no_classes(self):
        assert BindingHandle.new_factory() is None

    def test_context_factory_missing_inputs(self):
        context = BindingContext.new_instance(Product)
        assert BindingHandle.new_factory_for_context(None, Product) is None
        assert BindingHandle.new_factory_for_context(context) is None

    def test_unbindable_class(self):
        with pytest.raises(InvalidArgumentError, match="Cannot bind classes"):
            BindingHandle.new_factory(int)

    def test_is_a_content_handle_factory(self, factory):
        assert isinstance(factory, ContentHandleFactory)

    def test_handled_classes_in_order(self, factory):
        assert factory.get_handled_classes() == (Product, Invoice)
        reversed_factory = BindingHandle.new_factory(Invoice, Product)
        assert reversed_factory.get_handled_classes() == (Invoice, Product)

    def test_is_handled(self, factory):
        assert factory.is_handled(Product)
        assert factory.is_handled(Invoice)
        assert not factory.is_handled(SpecialProduct)
        assert not factory.is_handled(str)

    def test_new_handle_unregistered(self, factory):
        assert factory.new_handle(SpecialProduct) is None

    def test_new_handle_distinct_instances(self, factory):
        first = factory.new_handle(Product)
        second = factory.new_handle(Product)
        assert isinstance(first, BindingHandle)
        assert first is not second
        assert first.context is second.context is factory.context

    def test_handles_do_not_share_content(self, factory, product):
        first = factory.new_handle(Product).with_content(product)
        second = factory.new_handle(Product)
        assert second.get() is None
        assert first.get() is product

    def test_shared_caller_context(self):
        context = BindingContext.new_instance(Product, Invoice)
        factory = BindingHandle.new_factory_for_context(context, Product)
        assert factory.is_handled(Product)
        assert not factory.is_handled(Invoice)
        handle = factory.new_handle(Product)
        assert handle.context is context
        handle.from_buffer(b"<invoice><number>1</number></invoice>")
        assert handle.get() == Invoice(number=1)

    def test_concurrent_new_handle(self, factory):
        handles = []
        lock = threading.Lock()

        def worker():
            local = [factory.new_handle(Product) for _ in range(50)]
            with lock:
                handles.extend(local)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(handles) == 400
        assert len({id(h) for h in handles}) == 400
        assert all(h.context is factory.context for h in handles)


# ---------------------------------------------------------------------------
# TestRawHandles
# ---------------------------------------------------------------------------

class TestRawHandles:

    def test_bytes_handle(self):
        handle = BytesHandle().with_content(bytearray(b"abc")).with_mimetype("image/png")
        assert handle.get() == b"abc"
        assert handle.to_buffer() == b"abc"
        assert handle.send_content() == b"abc"
        assert handle.mimetype == "image/png"
        assert handle.format is Format.BINARY
        assert handle.receive_as() is bytes

    def test_bytes_handle_format_is_settable(self):
        handle = BytesHandle().with_format(Format.JSON)
        assert handle.format is Format.JSON

    def test_bytes_handle_from_empty_buffer_clears(self):
        handle = BytesHandle(b"abc")
        handle.from_buffer(b"")
        assert handle.get() is None
        with pytest.raises(IllegalStateError):
            handle.send_content()

    def test_bytes_handle_write(self):
        out = io.BytesIO()
        BytesHandle(b"\x00\x01").write(out)
        assert out.getvalue() == b"\x00\x01"

    def test_string_handle(self):
        handle = StringHandle().with_content("héllo")
        assert handle.format is Format.TEXT
        assert handle.to_buffer() == "héllo".encode("utf-8")
        handle.from_buffer("wörld".encode("utf-8"))
        assert handle.get() == "wörld"
        assert str(handle) == "wörld"

    def test_string_handle_invalid_utf8(self):
        with pytest.raises(ContentIOError, match="not valid UTF-8"):
            StringHandle().from_buffer(b"\xff")

    def test_input_stream_handle(self):
        handle = InputStreamHandle()
        handle.from_buffer(b"data")
        assert handle.get().read() == b"data"
        assert handle.resendable is False

    def test_input_stream_handle_to_buffer_is_rereadable(self):
        handle = InputStreamHandle(io.BytesIO(b"payload"))
        assert handle.to_buffer() == b"payload"
        assert handle.to_buffer() == b"payload"

    def test_input_stream_handle_write_closes(self):
        source = io.BytesIO(b"payload")
        out = io.BytesIO()
        InputStreamHandle(source).send_content().write(out)
        assert out.getvalue() == b"payload"
        assert source.closed

    def test_input_stream_handle_write_empties(self):
        handle = InputStreamHandle(io.BytesIO(b"payload"))
        handle.write(io.BytesIO())
        assert handle.get() is None
        with pytest.raises(IllegalStateError, match="No stream to write"):
            handle.send_content()

    def test_input_stream_handle_sink_failure_wraps(self, caplog):
        source = io.BytesIO(b"payload")
        handle = InputStreamHandle(source)
        with caplog.at_level(logging.ERROR, logger="docio.handles.raw"):
            with pytest.raises(ContentIOError, match="disk full") as excinfo:
                handle.write(_BrokenSink())
        assert isinstance(excinfo.value.__cause__, OSError)
        assert source.closed
        assert handle.get() is None
        assert "Failed to copy content stream" in caplog.text

    def test_input_stream_handle_source_failure_wraps(self):
        source = _BrokenSource(b"payload")
        handle = InputStreamHandle(source)
        with pytest.raises(ContentIOError, match="device gone"):
            handle.write(io.BytesIO())
        assert source.closed

    def test_input_stream_handle_failed_drain_empties(self):
        source = _BrokenSource(b"payload")
        handle = InputStreamHandle(source)
        with pytest.raises(ContentIOError, match="Failed to read content stream"):
            handle.to_buffer()
        assert source.closed
        assert handle.get() is None
        assert handle.to_buffer() is None


# ---------------------------------------------------------------------------
# TestElementHandle
# ---------------------------------------------------------------------------

class TestElementHandle:

    XML = b"<metadata><properties><size>815</size><empty/></properties></metadata>"

    def test_parse_and_evaluate(self):
        handle = ElementHandle()
        handle.from_buffer(self.XML)
        assert handle.get().tag == "metadata"
        assert handle.evaluate("metadata/properties/size") == "815"
        assert handle.evaluate("/metadata/properties/size") == "815"
        assert handle.evaluate("properties/size") == "815"
        assert handle.evaluate("metadata/properties/empty") == ""
        assert handle.evaluate("metadata/properties/missing") is None

    def test_evaluate_without_content(self):
        assert ElementHandle().evaluate("metadata") is None

    def test_format_pinned(self):
        with pytest.raises(InvalidArgumentError):
            ElementHandle().set_format(Format.JSON)

    def test_round_trip(self):
        root = ET.fromstring(self.XML)
        payload = ElementHandle(root).to_buffer()
        other = ElementHandle()
        other.from_buffer(payload)
        assert other.evaluate("properties/size") == "815"

    def test_malformed(self):
        stream = io.BytesIO(b"<metadata>")
        with pytest.raises(ContentIOError):
            ElementHandle().receive_content(stream)
        assert stream.closed

    def test_reject_doctype(self):
        with pytest.raises(ContentIOError, match="DOCTYPE"):
            ElementHandle().from_buffer(b'<!DOCTYPE x [<!ENTITY a "b">]><x>&a;</x>')

    def test_send_content_without_content(self):
        with pytest.raises(IllegalStateError):
            ElementHandle().send_content()
