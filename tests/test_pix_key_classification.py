import unittest

from app.contexts.payments.domain.pix import classify_pix_key


class PixKeyClassificationTest(unittest.TestCase):
    def test_cpf(self) -> None:
        info = classify_pix_key("12345678901")
        self.assertEqual(info.key_type, "cpf")
        self.assertEqual(info.display, "123.456.789-01")
        self.assertEqual(info.label, "CPF")

    def test_cnpj(self) -> None:
        info = classify_pix_key("12345678000199")
        self.assertEqual(info.key_type, "cnpj")
        self.assertEqual(info.display, "12.345.678/0001-99")

    def test_email_is_left_unformatted(self) -> None:
        info = classify_pix_key("a@b.com")
        self.assertEqual(info.key_type, "email")
        self.assertEqual(info.display, "a@b.com")
        self.assertEqual(info.label, "E-mail")

    def test_phone_with_country_code(self) -> None:
        info = classify_pix_key("+5511987654321")
        self.assertEqual(info.key_type, "phone")
        self.assertEqual(info.display, "(11) 98765-4321")

    def test_landline_without_country_code(self) -> None:
        info = classify_pix_key("1133334444")
        self.assertEqual(info.key_type, "phone")
        self.assertEqual(info.display, "(11) 3333-4444")

    def test_eleven_digits_are_read_as_cpf(self) -> None:
        # Mobile numbers without +55 collide with the CPF shape; CPF wins.
        self.assertEqual(classify_pix_key("11987654321").key_type, "cpf")

    def test_random_key(self) -> None:
        key = "123E4567-E12B-12D1-A456-426655440000"
        info = classify_pix_key(key)
        self.assertEqual(info.key_type, "random")
        self.assertEqual(info.display, key)

    def test_unrecognized_key_is_returned_unchanged(self) -> None:
        for raw in ("chave-qualquer", "", "12 34"):
            with self.subTest(raw=raw):
                info = classify_pix_key(raw)
                self.assertEqual(info.key_type, "generic")
                self.assertEqual(info.display, raw)
                self.assertEqual(info.label, "Chave PIX")

    def test_none_is_generic(self) -> None:
        info = classify_pix_key(None)
        self.assertEqual(info.key_type, "generic")
        self.assertEqual(info.display, "")
