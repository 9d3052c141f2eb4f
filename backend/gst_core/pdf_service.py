"""
GST Tax Invoice PDF Service

Generates a one-page tax invoice for a single commission transaction:
- Company header (name, address, GSTIN, PAN)
- Invoice number and date
- Commission line with CGST / SGST breakdown
- Compliance notes (total received is passed through, not revenue)

Filename format: "INV-FY24-00001.pdf"
"""

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import inch
from reportlab.lib import colors
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer, Table, TableStyle
from reportlab.lib.enums import TA_CENTER
from datetime import datetime
from typing import Dict, List, Any
from io import BytesIO
from xml.sax.saxutils import escape
import logging

from gst_core.financial_precision import to_decimal, to_float
from gst_core.gst_reporting import split_tax

logger = logging.getLogger(__name__)


def _money(value: Any) -> str:
    return f"{to_float(value):,.2f}"


class InvoicePDFGenerator:
    """Generate GST tax invoices"""

    def __init__(self):
        self.page_width, self.page_height = A4
        self.margin = 0.75 * inch
        self.styles = getSampleStyleSheet()
        self._setup_custom_styles()

    def _setup_custom_styles(self):
        """Setup custom paragraph styles"""
        self.styles.add(ParagraphStyle(
            name='InvoiceTitle',
            parent=self.styles['Heading1'],
            fontSize=20,
            alignment=TA_CENTER,
            spaceAfter=16,
            textColor=colors.HexColor('#1a365d')
        ))

        self.styles.add(ParagraphStyle(
            name='CompanyName',
            parent=self.styles['Normal'],
            fontSize=13,
            fontName='Helvetica-Bold',
            spaceAfter=4,
            textColor=colors.HexColor('#2d3748')
        ))

        self.styles.add(ParagraphStyle(
            name='InvoiceBodyText',
            parent=self.styles['Normal'],
            fontSize=10,
            leading=14,
            textColor=colors.HexColor('#2d3748')
        ))

        self.styles.add(ParagraphStyle(
            name='InvoiceNote',
            parent=self.styles['Normal'],
            fontSize=9,
            leading=12,
            textColor=colors.HexColor('#4a5568')
        ))

        self.styles.add(ParagraphStyle(
            name='InvoiceFooter',
            parent=self.styles['Normal'],
            fontSize=8,
            alignment=TA_CENTER,
            spaceBefore=20,
            textColor=colors.HexColor('#718096')
        ))

    def generate_pdf(
        self,
        transaction: Dict[str, Any],
        company: Dict[str, str],
        tax_rate_percent: float
    ) -> bytes:
        """
        Generate the tax invoice

        Args:
            transaction: Stored transaction document
            company: name, address, gstin, pan
            tax_rate_percent: Rate used for the line labels when the record has none

        Returns:
            PDF bytes
        """
        buffer = BytesIO()

        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            rightMargin=self.margin,
            leftMargin=self.margin,
            topMargin=self.margin,
            bottomMargin=self.margin,
            title=f"Tax Invoice {transaction.get('invoice_number', '')}"
        )

        rate = transaction.get("tax_rate_percent") or tax_rate_percent

        story = []
        story.extend(self._build_header(transaction, company))
        story.extend(self._build_amounts(transaction, rate))
        story.extend(self._build_notes(transaction, rate))

        doc.build(story)

        pdf_bytes = buffer.getvalue()
        buffer.close()

        logger.info(f"[EXPORT] Invoice PDF generated for {transaction.get('invoice_number')}")
        return pdf_bytes

    def _build_header(self, transaction: Dict[str, Any], company: Dict[str, str]) -> List:
        elements = []

        elements.append(Paragraph("TAX INVOICE", self.styles['InvoiceTitle']))

        elements.append(Paragraph(escape(company.get('name', '')), self.styles['CompanyName']))
        elements.append(Paragraph(escape(company.get('address', '')), self.styles['InvoiceBodyText']))
        elements.append(Paragraph(f"GSTIN: {escape(company.get('gstin') or 'N/A')}", self.styles['InvoiceBodyText']))
        elements.append(Paragraph(f"PAN: {escape(company.get('pan') or 'N/A')}", self.styles['InvoiceBodyText']))

        elements.append(Spacer(1, 16))

        tx_date = transaction.get('date')
        date_str = tx_date.strftime("%d/%m/%Y") if isinstance(tx_date, datetime) else str(tx_date)

        details_data = [
            ['Invoice No:', transaction.get('invoice_number') or 'N/A'],
            ['Invoice Date:', date_str],
            ['Financial Year:', transaction.get('financial_year') or 'N/A'],
            ['Payment Mode:', transaction.get('payment_mode') or 'QR'],
        ]

        details_table = Table(details_data, colWidths=[1.6*inch, 4*inch])
        details_table.setStyle(TableStyle([
            ('FONTNAME', (0, 0), (0, -1), 'Helvetica-Bold'),
            ('FONTNAME', (1, 0), (1, -1), 'Helvetica'),
            ('FONTSIZE', (0, 0), (-1, -1), 10),
            ('TEXTCOLOR', (0, 0), (0, -1), colors.HexColor('#4a5568')),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 4),
            ('TOPPADDING', (0, 0), (-1, -1), 4),
        ]))
        elements.append(details_table)
        elements.append(Spacer(1, 16))

        return elements

    def _build_amounts(self, transaction: Dict[str, Any], rate: float) -> List:
        """Commission line, GST split and net income"""
        split = split_tax(transaction.get('tax_amount'))
        half_rate = to_float(to_decimal(rate) / 2)

        table_data = [
            ['Description', 'Amount (Rs.)'],
            ['Commission Income (taxable value)', _money(transaction.get('commission_amount', 0))],
            [f'CGST ({half_rate:g}%)', _money(split['cgst'])],
            [f'SGST ({half_rate:g}%)', _money(split['sgst'])],
            ['Total GST', _money(transaction.get('tax_amount', 0))],
            ['Net Income (Commission - GST)', _money(transaction.get('net_income', 0))],
        ]

        amounts_table = Table(table_data, colWidths=[4.5*inch, 1.8*inch])
        amounts_table.setStyle(TableStyle([
            # Header
            ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor('#2d3748')),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.white),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),

            # Body
            ('FONTNAME', (0, 1), (-1, -3), 'Helvetica'),
            ('FONTSIZE', (0, 0), (-1, -1), 10),
            ('ALIGN', (1, 0), (1, -1), 'RIGHT'),
            ('LEFTPADDING', (0, 2), (0, 3), 20),

            # Totals
            ('BACKGROUND', (0, -2), (-1, -1), colors.HexColor('#e2e8f0')),
            ('FONTNAME', (0, -2), (-1, -1), 'Helvetica-Bold'),

            # Grid
            ('GRID', (0, 0), (-1, -1), 0.5, colors.HexColor('#cbd5e0')),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 6),
            ('TOPPADDING', (0, 0), (-1, -1), 6),
        ]))

        return [amounts_table, Spacer(1, 20)]

    def _build_notes(self, transaction: Dict[str, Any], rate: float) -> List:
        elements = [Paragraph("<b>IMPORTANT NOTES</b>", self.styles['InvoiceNote']), Spacer(1, 4)]

        notes = [
            f"Total amount received via QR: Rs. {_money(transaction.get('total_received', 0))}",
            f"Amount returned to merchant/customer: Rs. {_money(transaction.get('return_amount', 0))}",
            f"GST @{rate:g}% applies ONLY on the commission amount "
            f"(Rs. {_money(transaction.get('commission_amount', 0))})",
            "Total received is NOT revenue and is NOT subject to GST",
        ]
        for note in notes:
            elements.append(Paragraph(f"&bull; {note}", self.styles['InvoiceNote']))

        if transaction.get('remarks'):
            elements.append(Spacer(1, 6))
            elements.append(Paragraph(f"Remarks: {escape(transaction['remarks'])}", self.styles['InvoiceNote']))

        elements.append(Paragraph(
            f"This is a computer-generated invoice. Generated on {datetime.utcnow().strftime('%d/%m/%Y %H:%M')} UTC",
            self.styles['InvoiceFooter']
        ))

        return elements

    def get_filename(self, transaction: Dict[str, Any]) -> str:
        """
        Example: "INV-FY24-00001.pdf"
        """
        return f"{transaction.get('invoice_number') or transaction.get('_id')}.pdf"


# Singleton instance
pdf_generator = InvoicePDFGenerator()
